import logging
from subprocess import TimeoutExpired
from typing import List

from ltsupgrade import exceptions, log, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

SNAP_CMD = "snap"
SNAP_REMOVE_TIMEOUT = 600.0
SNAP_DIRECTORIES = ("/snap", "/var/snap", "/var/lib/snapd")

# base snaps can only go once nothing depends on them anymore
BASE_SNAPS = ("snapd", "core", "core18", "core20", "core22", "core24", "bare")


def is_snapd_installed() -> bool:
    return system.which(SNAP_CMD) is not None


def get_installed_snaps() -> List[str]:
    out, _ = system.subp(
        ["snap", "list", "--color", "never", "--unicode", "never"],
        rcs=[0, 1],
    )
    apps = out.splitlines()
    apps = apps[1:]
    return [line.split()[0] for line in apps if line.strip()]


def _removal_order(snaps: List[str]) -> List[str]:
    apps = [name for name in snaps if name not in BASE_SNAPS]
    bases = [name for name in snaps if name in BASE_SNAPS]
    bases.sort(key=lambda name: name == "snapd")
    return apps + bases


def remove_all_snaps():
    """Purge every installed snap, applications before base snaps.

    A snap that refuses to go is logged and left to the apt purge of snapd.
    """
    if not is_snapd_installed():
        LOG.debug("snap is not installed, nothing to remove")
        return
    for name in _removal_order(get_installed_snaps()):
        LOG.info("Removing snap: %s", name)
        try:
            system.subp(
                ["snap", "remove", "--purge", name],
                timeout=SNAP_REMOVE_TIMEOUT,
            )
        except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
            LOG.warning("Unable to remove snap %s: %s", name, e)
            continue
        log.audit(LOG, "Removed snap %s", name)


def remove_snap_directories():
    for directory in SNAP_DIRECTORIES:
        try:
            system.ensure_folder_absent(directory)
        except OSError as e:
            LOG.warning("Unable to remove %s: %s", directory, e)
