import logging
import os
import re
from subprocess import TimeoutExpired

from ltsupgrade import apt, defaults, log, messages, system, util
from ltsupgrade.config import UpgradeConfig
from ltsupgrade.stages.base import (
    Stage,
    command_output,
    preseed_grub_install_device,
)

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

RELEASE_UPGRADES_FILE = "/etc/update-manager/release-upgrades"
DO_RELEASE_UPGRADE_CMD = [
    "do-release-upgrade",
    "-f",
    "DistUpgradeViewNonInteractive",
    "-m",
    "server",
]


def set_release_upgrade_prompt(prompt: str = "lts"):
    """Only offer LTS releases to do-release-upgrade."""
    if os.path.exists(RELEASE_UPGRADES_FILE):
        content = system.load_file(RELEASE_UPGRADES_FILE)
    else:
        content = "[DEFAULT]\n"
    if re.search(r"^Prompt=", content, flags=re.MULTILINE):
        new_content = re.sub(
            r"^Prompt=.*$",
            "Prompt={}".format(prompt),
            content,
            flags=re.MULTILINE,
        )
    else:
        new_content = content.rstrip("\n") + "\nPrompt={}\n".format(prompt)
    if new_content != content:
        system.write_file(RELEASE_UPGRADES_FILE, new_content)


class ReleaseUpgradeStage(Stage):
    """Move the host to target_version with do-release-upgrade.

    Package index refresh and broken package repair are retried with
    backoff, clearing stale locks first. do-release-upgrade itself runs once,
    bounded by release_upgrade_timeout.
    """

    def __init__(self, cfg: UpgradeConfig, target_version: str) -> None:
        super().__init__(cfg)
        self.target_version = target_version

    @property
    def name(self) -> str:  # type: ignore
        return "upgrade-{}".format(self.target_version)

    def execute(self):
        current = system.get_release_version()
        if current == self.target_version:
            LOG.info(
                "System already runs %s, skipping do-release-upgrade",
                self.target_version,
            )
            return

        LOG.info(
            "Starting upgrade from %s to %s", current, self.target_version
        )
        set_release_upgrade_prompt("lts")
        apt.write_noninteractive_config()
        self.best_effort(
            "GRUB install device preseed", preseed_grub_install_device
        )

        self.with_self_healing(apt.update)
        self.with_self_healing(apt.fix_broken)

        self.release_upgrade()
        self.verify()

    def release_upgrade(self):
        timeout = self.cfg.release_upgrade_timeout
        log.audit(
            LOG,
            "Running do-release-upgrade to %s (timeout %ds)",
            self.target_version,
            timeout,
        )
        try:
            system.subp(
                DO_RELEASE_UPGRADE_CMD,
                capture=True,
                timeout=timeout,
                override_env_vars=defaults.APT_ENV,
            )
        except TimeoutExpired as e:
            raise self.failure(
                messages.E_RELEASE_UPGRADE_TIMEOUT.format(
                    version=self.target_version, timeout=timeout
                ).msg,
                command_output(e),
            )

    def verify(self):
        current = system.get_release_version()
        if current != self.target_version:
            raise self.failure(
                messages.E_RELEASE_VERSION_MISMATCH.format(
                    expected=self.target_version, current=current
                ).msg
            )
        LOG.info("Successfully upgraded to %s", self.target_version)
