import enum
import logging
import os

from ltsupgrade import defaults, exceptions, util
from ltsupgrade.files import UpgraderFile

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))


@enum.unique
class UpgradeState(enum.Enum):
    """Progress of the upgrade, as persisted in the state file."""

    INITIAL = "initial"
    PENDING_22_04 = "22.04"
    PENDING_24_04 = "24.04"
    POST_SETUP = "setup"

    @classmethod
    def valid_values(cls):
        return [state.value for state in cls]

    @classmethod
    def from_value(cls, value: str, source: str = "") -> "UpgradeState":
        """Return the member for value. Anything else is corruption."""
        try:
            return cls(value)
        except ValueError:
            raise exceptions.StateCorruptError(
                value=value,
                state_file_path=source,
                valid_states=", ".join(cls.valid_values()),
            )


class StateStore:
    """Durable record of the upgrade progress.

    A missing file means the upgrade has not started yet. The file is only
    ever replaced through a rename, so a crash leaves either the old or the
    new state on disk.
    """

    def __init__(
        self, directory: str, file_name: str = defaults.STATE_FILE
    ) -> None:
        self.state_file = UpgraderFile(file_name, directory, private=True)

    @property
    def path(self) -> str:
        return self.state_file.path

    def read(self) -> UpgradeState:
        content = self.state_file.read()
        if content is None:
            return UpgradeState.INITIAL
        return UpgradeState.from_value(content.strip(), self.path)

    def write(self, state: UpgradeState):
        if not isinstance(state, UpgradeState):
            raise exceptions.StateCorruptError(
                value=state,
                state_file_path=self.path,
                valid_states=", ".join(UpgradeState.valid_values()),
            )
        try:
            self.state_file.write(state.value + "\n")
        except OSError as e:
            raise exceptions.StateWriteError(
                state_file_path=self.path, error=str(e)
            )
        LOG.debug("Persisted upgrade state %s to %s", state.value, self.path)

    def clear(self):
        self.state_file.delete()

    def exists(self) -> bool:
        return os.path.exists(self.path)
