import sys
from gettext import NullTranslations, translation
from typing import Dict, Optional

if sys.stdout.encoding is None or "UTF-8" not in sys.stdout.encoding.upper():
    t = NullTranslations()
else:
    t = translation("ubuntu-lts-upgrader", "/usr/share/locale", fallback=True)


###############################################################################
#                              MISCELLANEOUS                                  #
###############################################################################


CLI_INTERRUPT_RECEIVED = t.gettext("Interrupt received; exiting.")

LOCK_HELD = t.gettext("""Upgrade in progress (pid:{pid})""")

MISSING_YAML_MODULE = t.gettext(
    """\
Couldn't import the YAML module.
Make sure the 'python3-yaml' package is installed correctly
and /usr/lib/python3/dist-packages is in your PYTHONPATH."""
)

###############################################################################
#                      GENERIC SYSTEM OPERATIONS                              #
###############################################################################


SUBP_INVALID_COMMAND = t.gettext("Invalid command specified '{cmd}'.")
SUBP_COMMAND_FAILED = t.gettext(
    "Failed running command '{cmd}' [exit({exit_code})]." " Message: {stderr}"
)

###############################################################################
#                              STATE MACHINE                                  #
###############################################################################


CURRENT_STATE = t.gettext("Current upgrade state: {state}")
STAGE_STARTING = t.gettext("Starting stage {stage} from state {state}")
STAGE_SUCCEEDED = t.gettext("Stage {stage} completed successfully")
STATE_TRANSITION = t.gettext("State transition: {old} -> {new}")
UPGRADE_COMPLETE = t.gettext(
    "Upgrade pipeline completed successfully. Upgrade state cleared."
)
REBOOT_SCHEDULED = t.gettext(
    "Rebooting in {minutes} minute(s) to continue the upgrade"
)
REBOOT_MESSAGE = t.gettext("Rebooting to continue upgrade from state {state}")

###############################################################################
#                              NAMED MESSAGES                                 #
###############################################################################


class NamedMessage:
    def __init__(
        self,
        name: str,
        msg: str,
        additional_info: Optional[Dict[str, str]] = None,
    ):
        self.name = name
        self.msg = msg
        # we should use this field whenever we want to provide
        # extra information to the message. This is specially
        # useful if the message represents an error.
        self.additional_info = additional_info

    def __eq__(self, other):
        return (
            self.msg == other.msg
            and self.name == other.name
            and self.additional_info == other.additional_info
        )

    def __repr__(self):
        return "NamedMessage({}, {}, {})".format(
            self.name.__repr__(),
            self.msg.__repr__(),
            self.additional_info.__repr__(),
        )


class FormattedNamedMessage:
    def __init__(self, name: str, msg: str):
        self.name = name
        self.tmpl_msg = msg

    def format(self, **msg_params) -> NamedMessage:
        return NamedMessage(
            name=self.name, msg=self.tmpl_msg.format(**msg_params)
        )

    def __repr__(self):
        return "FormattedNamedMessage({}, {})".format(
            self.name.__repr__(),
            self.tmpl_msg.__repr__(),
        )


###############################################################################
#                              ERRORS                                         #
###############################################################################


E_NONROOT_USER = NamedMessage(
    "nonroot-user",
    t.gettext("This command must be run as root (try using sudo)."),
)

E_UNEXPECTED_ERROR = FormattedNamedMessage(
    "unexpected-error",
    t.gettext(
        """\
Unexpected error(s) occurred: {error_msg}
For more details, see the logs in: {log_dir}"""
    ),
)

E_LOCK_HELD_ERROR = FormattedNamedMessage(
    "lock-held-error",
    t.gettext("Unable to start the upgrade.\n") + LOCK_HELD,
)

E_INVALID_LOCK_FILE = FormattedNamedMessage(
    "invalid-lock-file",
    t.gettext(
        """\
There is a corrupted lock file in the system. To continue, please remove it
from the system by running:

$ sudo rm {lock_file_path}"""
    ),
)

E_LOCK_FILE_WRITE_FAILED = FormattedNamedMessage(
    "lock-file-write-failed",
    t.gettext("Unable to create lock file {lock_file_path}: {error}"),
)

E_STATE_CORRUPT = FormattedNamedMessage(
    "state-corrupt",
    t.gettext(
        """\
Invalid upgrade state {value!r} found in {state_file_path}.
Refusing to guess the current stage. Inspect the system, then write one of
{valid_states} into the state file, or remove it to restart from scratch."""
    ),
)

E_STATE_WRITE_FAILED = FormattedNamedMessage(
    "state-write-failed",
    t.gettext("Unable to write upgrade state to {state_file_path}: {error}"),
)

E_INSUFFICIENT_DISK_SPACE = FormattedNamedMessage(
    "precondition-disk",
    t.gettext(
        "Insufficient disk space on {path}. "
        "Required: {required_mb}MB, Available: {available_mb}MB"
    ),
)

E_NETWORK_UNREACHABLE = FormattedNamedMessage(
    "precondition-network",
    t.gettext("No network connectivity: {host} is unreachable"),
)

E_HELD_PACKAGES = FormattedNamedMessage(
    "precondition-package-system-held",
    t.gettext("Packages are on hold and would block the upgrade: {packages}"),
)

E_BROKEN_PACKAGES = FormattedNamedMessage(
    "precondition-package-system-broken",
    t.gettext(
        "dpkg reports broken or half-configured packages:\n{audit_output}"
    ),
)

E_PACKAGE_MANAGER_BUSY = FormattedNamedMessage(
    "precondition-package-system-busy",
    t.gettext(
        "The package manager lock is held by: {processes}. "
        "Wait for it to finish and try again."
    ),
)

E_STAGE_FAILED = FormattedNamedMessage(
    "stage-failed",
    t.gettext(
        """\
Stage {stage} failed: {cause}
Last lines of command output:
{diagnostic_tail}"""
    ),
)

E_RELEASE_UPGRADE_TIMEOUT = FormattedNamedMessage(
    "release-upgrade-timeout",
    t.gettext(
        "do-release-upgrade to {version} did not finish "
        "within {timeout} seconds"
    ),
)

E_RELEASE_VERSION_MISMATCH = FormattedNamedMessage(
    "release-version-mismatch",
    t.gettext(
        "Failed to upgrade to {expected}. Current version: {current}"
    ),
)

E_DATABASE_BACKUP_FAILED = FormattedNamedMessage(
    "database-backup-failed",
    t.gettext("Backup of database {db_name} failed: {reason}"),
)

E_DATABASE_RESTORE_FAILED = FormattedNamedMessage(
    "database-restore-failed",
    t.gettext("Restore of database {db_name} failed: {reason}"),
)

E_SCHEDULING_FAILED = FormattedNamedMessage(
    "scheduling-failed",
    t.gettext("Unable to {action} boot hook {unit}: {error}"),
)

E_REBOOT_FAILED = FormattedNamedMessage(
    "reboot-failed",
    t.gettext(
        """\
Unable to schedule reboot: {error}
The boot hook is armed; reboot the machine manually to continue."""
    ),
)

E_INVALID_CONFIG_VALUE = FormattedNamedMessage(
    "invalid-config-value",
    t.gettext(
        "Invalid value for {key} in configuration: {value!r} ({expected})"
    ),
)

E_UNSUPPORTED_TARGET_VERSIONS = FormattedNamedMessage(
    "unsupported-target-versions",
    t.gettext(
        "target_versions must be {supported}, found {value!r} in configuration"
    ),
)

E_INVALID_CONFIG_FILE = FormattedNamedMessage(
    "invalid-config-file",
    t.gettext("Unable to parse configuration file {path}: {error}"),
)
