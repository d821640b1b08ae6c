import pytest

from ltsupgrade import exceptions
from ltsupgrade.yaml import safe_load


class TestSafeLoad:
    def test_parses_mapping(self):
        assert {"retry_attempts": 4, "monitor": {"enabled": False}} == (
            safe_load("retry_attempts: 4\nmonitor:\n  enabled: false\n")
        )

    def test_syntax_errors_name_the_file(self):
        with pytest.raises(exceptions.InvalidConfigFile) as excinfo:
            safe_load("base_dir: [unclosed", "/etc/upgrader.conf")

        assert "/etc/upgrader.conf" == excinfo.value.path
        assert excinfo.value.msg.startswith(
            "Unable to parse configuration file /etc/upgrader.conf:"
        )
