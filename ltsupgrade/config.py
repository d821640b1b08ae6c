import copy
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from ltsupgrade import defaults, exceptions, system, util
from ltsupgrade.defaults import (
    CONFIG_DEFAULTS,
    CONFIG_FIELD_ENVVAR_ALLOWLIST,
    DEFAULT_CONFIG_FILE,
)
from ltsupgrade.yaml import safe_load

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

SUPPORTED_TARGET_VERSIONS = ["22.04", "24.04"]

# Basic schema validation top-level keys for parse_config handling
VALID_CONFIG_KEYS = tuple(CONFIG_DEFAULTS.keys())

# Nested sections merged key by key over their defaults
NESTED_CONFIG_KEYS = ("database", "cleanup", "post_setup", "monitor")


class UpgradeConfig:
    """All knobs of one orchestrator run.

    Built once by the entry point and handed to every collaborator, so no
    component reads the process environment to make decisions.
    """

    def __init__(self, cfg: Optional[Dict[str, Any]] = None) -> None:
        if cfg:
            self.cfg_path = None
            self.cfg = merge_with_defaults(cfg)
            self.invalid_keys = None  # type: Optional[set]
        else:
            self.cfg_path = get_config_path()
            self.cfg, self.invalid_keys = parse_config(self.cfg_path)

    @property
    def base_dir(self) -> str:
        return self.cfg["base_dir"]

    @property
    def state_file(self) -> str:
        return os.path.join(self.base_dir, defaults.STATE_FILE)

    @property
    def lock_dir(self) -> str:
        return os.path.join(self.base_dir, defaults.LOCKS_SUBDIR)

    @property
    def lock_file(self) -> str:
        return os.path.join(self.lock_dir, defaults.LOCK_FILE)

    @property
    def backup_dir(self) -> str:
        return os.path.join(self.base_dir, defaults.BACKUPS_SUBDIR)

    @property
    def log_dir(self) -> str:
        return self.cfg.get("log_dir") or os.path.join(
            self.base_dir, defaults.LOGS_SUBDIR
        )

    @property
    def log_level(self):
        log_level = self.cfg.get("log_level")
        try:
            return getattr(logging, log_level.upper())
        except AttributeError:
            return logging.DEBUG

    @property
    def target_versions(self) -> List[str]:
        value = [str(v) for v in self.cfg["target_versions"]]
        if value != SUPPORTED_TARGET_VERSIONS:
            raise exceptions.UnsupportedTargetVersions(
                supported=SUPPORTED_TARGET_VERSIONS, value=value
            )
        return value

    @property
    def min_free_disk_mb(self) -> int:
        return self._positive_int("min_free_disk_mb")

    @property
    def disk_check_path(self) -> str:
        return self.cfg["disk_check_path"]

    @property
    def min_free_memory_mb(self) -> int:
        return self._positive_int("min_free_memory_mb")

    @property
    def network_check_host(self) -> str:
        return self.cfg["network_check_host"]

    @property
    def release_upgrade_timeout(self) -> int:
        return self._positive_int("release_upgrade_timeout")

    @property
    def boot_start_timeout(self) -> int:
        return self._positive_int("boot_start_timeout")

    @property
    def retry_attempts(self) -> int:
        return self._positive_int("retry_attempts")

    @property
    def retry_base_delay(self) -> int:
        return self._positive_int("retry_base_delay")

    @property
    def retry_sleeps(self) -> List[float]:
        return util.backoff_sleeps(self.retry_attempts, self.retry_base_delay)

    @property
    def reboot_delay_minutes(self) -> int:
        return self._positive_int("reboot_delay_minutes")

    @property
    def diagnostic_tail_lines(self) -> int:
        return self._positive_int("diagnostic_tail_lines")

    @property
    def invocation_command(self) -> List[str]:
        """The command the boot hook runs. Never carries arguments of ours."""
        command = self.cfg.get("invocation_command")
        if not command:
            return [sys.executable, "-m", "ltsupgrade.cli"]
        if isinstance(command, str):
            return command.split()
        return [str(part) for part in command]

    @property
    def database(self) -> Dict[str, Any]:
        return self.cfg["database"]

    @property
    def cleanup(self) -> Dict[str, Any]:
        return self.cfg["cleanup"]

    @property
    def post_setup(self) -> Dict[str, Any]:
        return self.cfg["post_setup"]

    @property
    def monitor(self) -> Dict[str, Any]:
        return self.cfg["monitor"]

    def _positive_int(self, key: str) -> int:
        value = self.cfg.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise exceptions.InvalidConfigValue(
                key=key, value=value, expected="a positive integer"
            )
        return value

    def warn_about_invalid_keys(self):
        if self.invalid_keys is not None:
            for invalid_key in sorted(self.invalid_keys):
                LOG.warning(
                    "Ignoring invalid config key %s in %s",
                    invalid_key,
                    self.cfg_path,
                )


def get_config_path() -> str:
    """Get config path to be used when loading config dict."""
    config_file = os.environ.get("LTS_UPGRADE_CONFIG_FILE")
    if config_file:
        return config_file

    return DEFAULT_CONFIG_FILE


def merge_with_defaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(CONFIG_DEFAULTS)  # type: Dict[str, Any]
    for key, value in cfg.items():
        if key in NESTED_CONFIG_KEYS and isinstance(value, dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def parse_config(config_path=None):
    """Parse the upgrader config file

    Any missing configuration keys will be set to CONFIG_DEFAULTS.

    Only the values listed in CONFIG_FIELD_ENVVAR_ALLOWLIST can be overridden
    by environment variables with the prefix 'LTS_UPGRADE_'.

    @param config_path: Fullpath to the config file. If unspecified, use
        DEFAULT_CONFIG_FILE.

    @return: Tuple of (dict of configuration values, set of ignored keys).
    """
    if not config_path:
        config_path = get_config_path()

    file_cfg = {}  # type: Dict[str, Any]
    LOG.debug("Using upgrader configuration file at %s", config_path)
    if os.path.exists(config_path):
        file_cfg = safe_load(system.load_file(config_path), config_path) or {}
        if not isinstance(file_cfg, dict):
            raise exceptions.InvalidConfigFile(
                path=config_path, error="top level must be a mapping"
            )

    invalid_keys = set(file_cfg.keys()).difference(VALID_CONFIG_KEYS)
    for invalid_key in invalid_keys:
        file_cfg.pop(invalid_key)

    cfg = merge_with_defaults(file_cfg)

    for key, value in os.environ.items():
        key = key.lower()
        if key in CONFIG_FIELD_ENVVAR_ALLOWLIST:
            # Strip leading LTS_UPGRADE_
            cfg[key[len("lts_upgrade_") :]] = value

    for key in ("base_dir", "log_dir"):
        if cfg.get(key):
            cfg[key] = os.path.expanduser(cfg[key])

    return cfg, invalid_keys
