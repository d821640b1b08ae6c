import abc
import logging
from subprocess import TimeoutExpired
from typing import Any, Callable, Optional, TypeVar

from ltsupgrade import apt, exceptions, system, util
from ltsupgrade.config import UpgradeConfig

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

T = TypeVar("T")

# Failures a stage step can run into while driving external tools
STEP_ERRORS = (
    exceptions.ProcessExecutionError,
    exceptions.UpgraderError,
    TimeoutExpired,
    OSError,
)


def command_output(error: Exception) -> str:
    if isinstance(error, exceptions.ProcessExecutionError):
        parts = (error.stdout, error.stderr)
        return "\n".join(part for part in parts if part)
    if isinstance(error, TimeoutExpired):
        output = []
        for part in (error.output, error.stderr):
            if isinstance(part, bytes):
                part = part.decode("utf-8", errors="ignore")
            if part:
                output.append(part)
        return "\n".join(output)
    return ""


class Stage(metaclass=abc.ABCMeta):
    """One bounded unit of upgrade work, dispatched for a single state.

    Stages never touch the state file or the lock. They return on success and
    raise StageFailedError otherwise; every stage must be safe to run again
    after a failure.
    """

    # Required: short name used in logs and errors
    name = None  # type: str

    def __init__(self, cfg: UpgradeConfig) -> None:
        self.cfg = cfg

    @abc.abstractmethod
    def execute(self):
        """Do the work of the stage, raising on mandatory failures."""
        pass

    def run(self):
        try:
            self.execute()
        except exceptions.StageFailedError:
            raise
        except STEP_ERRORS as e:
            raise self.failure(str(e), command_output(e))

    def failure(
        self, cause: str, output: str = ""
    ) -> exceptions.StageFailedError:
        return exceptions.StageFailedError(
            stage=self.name,
            cause=cause,
            diagnostic_tail=util.tail(output, self.cfg.diagnostic_tail_lines)
            or "(no output captured)",
        )

    def best_effort(
        self, description: str, func: Callable[..., T], *args: Any
    ) -> Optional[T]:
        """Run a step whose failure only deserves a warning."""
        try:
            return func(*args)
        except STEP_ERRORS as e:
            LOG.warning("%s failed, continuing anyway: %s", description, e)
            return None

    def with_self_healing(self, func: Callable[[], T]) -> T:
        return apt.self_healing(func, self.cfg.retry_sleeps)

    def log_free_space(self, when: str):
        LOG.info(
            "%s free space on %s: %dMB",
            when,
            self.cfg.disk_check_path,
            system.get_free_disk_space_mb(self.cfg.disk_check_path),
        )


def preseed_grub_install_device():
    """Tell grub-pc where to install, so the upgrade never asks."""
    out, _err = system.subp(["grub-probe", "--target=device", "/"])
    device = out.strip()
    if device:
        apt.debconf_set_selections(
            ["grub-pc grub-pc/install_devices multiselect {}".format(device)]
        )
