import logging
import os
import sys

import mock
import pytest

from ltsupgrade import exceptions
from ltsupgrade.config import UpgradeConfig, get_config_path, parse_config
from ltsupgrade.defaults import CONFIG_DEFAULTS, DEFAULT_CONFIG_FILE


class TestUpgradeConfig:
    def test_paths_derive_from_base_dir(self, FakeConfig, tmpdir):
        cfg = FakeConfig()

        assert tmpdir.strpath == cfg.base_dir
        assert tmpdir.join(".upgrade_state").strpath == cfg.state_file
        assert tmpdir.join("locks").strpath == cfg.lock_dir
        assert tmpdir.join("locks", "upgrade.lock").strpath == cfg.lock_file
        assert tmpdir.join("backups").strpath == cfg.backup_dir
        assert tmpdir.join("logs").strpath == cfg.log_dir

    def test_explicit_log_dir_wins(self, FakeConfig):
        cfg = FakeConfig({"log_dir": "/var/log/ltsupgrade"})

        assert "/var/log/ltsupgrade" == cfg.log_dir

    @pytest.mark.parametrize(
        "log_level,expected",
        (
            ("debug", logging.DEBUG),
            ("INFO", logging.INFO),
            ("warning", logging.WARNING),
            ("bogus", logging.DEBUG),
            (None, logging.DEBUG),
        ),
    )
    def test_log_level(self, log_level, expected, FakeConfig):
        assert expected == FakeConfig({"log_level": log_level}).log_level

    def test_nested_sections_merge_over_defaults(self, FakeConfig):
        cfg = FakeConfig({"database": {"name": "inventory"}})

        assert "inventory" == cfg.database["name"]
        assert (
            CONFIG_DEFAULTS["database"]["backup_timeout"]
            == cfg.database["backup_timeout"]
        )
        # defaults are never mutated by a merge
        assert "bobe" == CONFIG_DEFAULTS["database"]["name"]

    def test_retry_sleeps_back_off_exponentially(self, FakeConfig):
        cfg = FakeConfig({"retry_attempts": 4, "retry_base_delay": 10})

        assert [10, 20, 40] == cfg.retry_sleeps

    @pytest.mark.parametrize("value", (-1, "10", 1.5, True, None))
    def test_positive_integers_are_validated(self, value, FakeConfig):
        cfg = FakeConfig({"release_upgrade_timeout": value})

        with pytest.raises(exceptions.InvalidConfigValue) as excinfo:
            cfg.release_upgrade_timeout

        assert "release_upgrade_timeout" in excinfo.value.msg

    @pytest.mark.parametrize(
        "value", (["22.04"], ["24.04", "22.04"], ["22.04", "24.04", "26.04"])
    )
    def test_only_supported_target_versions(self, value, FakeConfig):
        cfg = FakeConfig({"target_versions": value})

        with pytest.raises(exceptions.UnsupportedTargetVersions):
            cfg.target_versions

    def test_target_versions_accept_yaml_floats(self, FakeConfig):
        cfg = FakeConfig({"target_versions": [22.04, 24.04]})

        assert ["22.04", "24.04"] == cfg.target_versions

    def test_default_invocation_command_runs_this_interpreter(
        self, FakeConfig
    ):
        assert [
            sys.executable,
            "-m",
            "ltsupgrade.cli",
        ] == FakeConfig().invocation_command

    @pytest.mark.parametrize(
        "value,expected",
        (
            ("/usr/bin/ubuntu-lts-upgrade", ["/usr/bin/ubuntu-lts-upgrade"]),
            (
                "/usr/bin/python3 -m ltsupgrade.cli",
                ["/usr/bin/python3", "-m", "ltsupgrade.cli"],
            ),
            (["/usr/bin/ubuntu-lts-upgrade"], ["/usr/bin/ubuntu-lts-upgrade"]),
        ),
    )
    def test_configured_invocation_command(self, value, expected, FakeConfig):
        cfg = FakeConfig({"invocation_command": value})

        assert expected == cfg.invocation_command


class TestParseConfig:
    @mock.patch.dict("os.environ", {}, clear=True)
    def test_defaults_without_config_file(self, tmpdir):
        cfg, invalid_keys = parse_config(tmpdir.join("missing.conf").strpath)

        assert CONFIG_DEFAULTS == cfg
        assert set() == invalid_keys

    @mock.patch.dict("os.environ", {}, clear=True)
    def test_file_values_override_defaults(self, tmpdir):
        config_file = tmpdir.join("upgrader.conf")
        config_file.write(
            "base_dir: /srv/upgrade\n"
            "min_free_disk_mb: 2048\n"
            "monitor:\n"
            "  interval: 60\n"
            "bogus_key: 1\n"
        )

        cfg, invalid_keys = parse_config(config_file.strpath)

        assert "/srv/upgrade" == cfg["base_dir"]
        assert 2048 == cfg["min_free_disk_mb"]
        assert 60 == cfg["monitor"]["interval"]
        assert CONFIG_DEFAULTS["monitor"]["disk_threshold"] == (
            cfg["monitor"]["disk_threshold"]
        )
        assert {"bogus_key"} == invalid_keys
        assert "bogus_key" not in cfg

    @mock.patch.dict(
        "os.environ",
        {
            "LTS_UPGRADE_LOG_LEVEL": "warning",
            "LTS_UPGRADE_BASE_DIR": "/not/allowed",
        },
        clear=True,
    )
    def test_only_allowlisted_environment_overrides(self, tmpdir):
        cfg, _ = parse_config(tmpdir.join("missing.conf").strpath)

        assert "warning" == cfg["log_level"]
        assert CONFIG_DEFAULTS["base_dir"] == cfg["base_dir"]

    @pytest.mark.parametrize(
        "content", ("base_dir: [unclosed\n", "- a list\n- at the top\n")
    )
    def test_unparseable_file_raises(self, content, tmpdir):
        config_file = tmpdir.join("upgrader.conf")
        config_file.write(content)

        with pytest.raises(exceptions.InvalidConfigFile) as excinfo:
            parse_config(config_file.strpath)

        assert config_file.strpath in excinfo.value.msg

    @mock.patch.dict("os.environ", {}, clear=True)
    def test_warns_about_invalid_keys(self, tmpdir, caplog_text):
        config_file = tmpdir.join("upgrader.conf")
        config_file.write("bogus_key: 1\n")

        with mock.patch.dict(
            "os.environ", {"LTS_UPGRADE_CONFIG_FILE": config_file.strpath}
        ):
            cfg = UpgradeConfig()
        cfg.warn_about_invalid_keys()

        assert "Ignoring invalid config key bogus_key" in caplog_text()

    def test_expands_home_in_paths(self, tmpdir):
        config_file = tmpdir.join("upgrader.conf")
        config_file.write("base_dir: ~/upgrade\n")

        with mock.patch.dict("os.environ", {"HOME": "/home/ops"}):
            cfg, _ = parse_config(config_file.strpath)

        assert os.path.join("/home/ops", "upgrade") == cfg["base_dir"]


class TestGetConfigPath:
    @mock.patch.dict("os.environ", {}, clear=True)
    def test_default_path(self):
        assert DEFAULT_CONFIG_FILE == get_config_path()

    @mock.patch.dict(
        "os.environ", {"LTS_UPGRADE_CONFIG_FILE": "/tmp/my.conf"}
    )
    def test_path_from_environment(self):
        assert "/tmp/my.conf" == get_config_path()
