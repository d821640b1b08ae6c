from typing import Optional

from ltsupgrade import messages


class ProcessExecutionError(IOError):
    def __init__(
        self,
        cmd: str,
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.cmd = cmd
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        if not exit_code:
            message = messages.SUBP_INVALID_COMMAND.format(cmd=cmd)
        else:
            message = messages.SUBP_COMMAND_FAILED.format(
                cmd=cmd, exit_code=exit_code, stderr=stderr
            )
        super().__init__(message)


class UpgraderError(Exception):
    """
    Base class for all of our custom errors.
    Every error the orchestrator reports to the operator extends this class.
    """

    _msg = None  # type: messages.NamedMessage
    _formatted_msg = None  # type: messages.FormattedNamedMessage

    exit_code = 1

    def __init__(self, **kwargs) -> None:
        if self._formatted_msg is not None:
            self.named_msg = self._formatted_msg.format(
                **kwargs
            )  # type: messages.NamedMessage
        else:
            self.named_msg = self._msg

        self.additional_info = kwargs

        for key, value in kwargs.items():
            setattr(self, key, value)

    @property
    def msg(self):
        return self.named_msg.msg

    @property
    def msg_code(self):
        return self.named_msg.name

    def __str__(self):
        return self.named_msg.msg


###############################################################################
#                              LOCK                                           #
###############################################################################


class LockHeldError(UpgraderError):
    """An exception for when another upgrader process holds the lock

    :param pid: Integer of the process id of the lock owner
    """

    _formatted_msg = messages.E_LOCK_HELD_ERROR
    pid = None  # type: int


class InvalidLockFile(UpgraderError):
    _formatted_msg = messages.E_INVALID_LOCK_FILE


class LockFileWriteError(UpgraderError):
    _formatted_msg = messages.E_LOCK_FILE_WRITE_FAILED


###############################################################################
#                              STATE                                          #
###############################################################################


class StateCorruptError(UpgraderError):
    _formatted_msg = messages.E_STATE_CORRUPT


class StateWriteError(UpgraderError):
    _formatted_msg = messages.E_STATE_WRITE_FAILED


###############################################################################
#                              PRECONDITIONS                                  #
###############################################################################


class PreconditionFailedError(UpgraderError):
    """A system health check failed before any stage work happened.

    ``kind`` is one of "disk", "network" or "package-system".
    """

    kind = None  # type: str


class InsufficientDiskSpaceError(PreconditionFailedError):
    kind = "disk"
    _formatted_msg = messages.E_INSUFFICIENT_DISK_SPACE


class NetworkUnreachableError(PreconditionFailedError):
    kind = "network"
    _formatted_msg = messages.E_NETWORK_UNREACHABLE


class HeldPackagesError(PreconditionFailedError):
    kind = "package-system"
    _formatted_msg = messages.E_HELD_PACKAGES


class BrokenPackagesError(PreconditionFailedError):
    kind = "package-system"
    _formatted_msg = messages.E_BROKEN_PACKAGES


class PackageManagerBusyError(PreconditionFailedError):
    kind = "package-system"
    _formatted_msg = messages.E_PACKAGE_MANAGER_BUSY


###############################################################################
#                              STAGES                                         #
###############################################################################


class StageFailedError(UpgraderError):
    """A stage executor could not complete its work.

    :param stage: name of the failing stage
    :param cause: short description of what failed
    :param diagnostic_tail: last lines of the external tool output
    """

    _formatted_msg = messages.E_STAGE_FAILED


class DatabaseBackupError(UpgraderError):
    _formatted_msg = messages.E_DATABASE_BACKUP_FAILED


class DatabaseRestoreError(UpgraderError):
    _formatted_msg = messages.E_DATABASE_RESTORE_FAILED


###############################################################################
#                              BOOT HOOK                                      #
###############################################################################


class SchedulingFailedError(UpgraderError):
    _formatted_msg = messages.E_SCHEDULING_FAILED


class RebootFailedError(UpgraderError):
    _formatted_msg = messages.E_REBOOT_FAILED


###############################################################################
#                              MISCELLANEOUS                                  #
###############################################################################


class NonRootUserError(UpgraderError):
    """An exception to be raised when a user needs to be root."""

    _msg = messages.E_NONROOT_USER


class InvalidConfigValue(UpgraderError):
    _formatted_msg = messages.E_INVALID_CONFIG_VALUE


class InvalidConfigFile(UpgraderError):
    _formatted_msg = messages.E_INVALID_CONFIG_FILE


class UnsupportedTargetVersions(UpgraderError):
    _formatted_msg = messages.E_UNSUPPORTED_TARGET_VERSIONS
