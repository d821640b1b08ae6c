import glob
import logging
import os
import signal
import tempfile
import time
from subprocess import TimeoutExpired
from typing import Callable, List, NamedTuple, Optional, TypeVar

from ltsupgrade import defaults, exceptions, log, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

T = TypeVar("T")

APT_SOURCES_LIST = "/etc/apt/sources.list"
APT_SOURCES_DIR = "/etc/apt/sources.list.d"
APT_CONF_FILE = "/etc/apt/apt.conf.d/99ltsupgrade-noninteractive"
DPKG_CONF_FILE = "/etc/dpkg/dpkg.cfg.d/99ltsupgrade-noninteractive"

APT_LOCK_FILES = (
    "/var/lib/dpkg/lock",
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/apt/lists/lock",
    "/var/cache/apt/archives/lock",
)

APT_GET_OPTIONS = [
    "-y",
    "-o",
    "Dpkg::Options::=--force-confdef",
    "-o",
    "Dpkg::Options::=--force-confnew",
]

APT_CONF_CONTENT = """\
APT::Get::Assume-Yes "true";
APT::Get::allow-downgrades "true";
APT::Get::allow-remove-essential "true";
DPkg::Options {
   "--force-confdef";
   "--force-confnew";
   "--force-confmiss";
}
DPkg::Lock::Timeout "60";
"""

DPKG_CONF_CONTENT = """\
force-confdef
force-confnew
"""

# seconds given to a terminated package manager before it gets killed
TERMINATE_GRACE_PERIOD = 10

InstalledPackage = NamedTuple(
    "InstalledPackage",
    [
        ("name", str),
        ("size_kb", int),
    ],
)


def run_apt_command(
    cmd: List[str],
    timeout: Optional[float] = None,
    retry_sleeps: Optional[List[float]] = None,
) -> str:
    """Run a package manager command non-interactively.

    :param cmd: List containing the command to run, passed to subp.
    :param timeout: Optional number of seconds before the command is killed.
    :param retry_sleeps: Optional sleeps between plain retries.

    :return: stdout of the command
    :raise ProcessExecutionError: when the command fails
    """
    out, _err = system.subp(
        cmd,
        capture=True,
        timeout=timeout,
        retry_sleeps=retry_sleeps,
        override_env_vars=defaults.APT_ENV,
    )
    return out


def update() -> str:
    return run_apt_command(["apt-get", "update"])


def upgrade() -> str:
    return run_apt_command(["apt-get"] + APT_GET_OPTIONS + ["upgrade"])


def dist_upgrade() -> str:
    return run_apt_command(["apt-get"] + APT_GET_OPTIONS + ["dist-upgrade"])


def install(packages: List[str]) -> str:
    return run_apt_command(
        ["apt-get"] + APT_GET_OPTIONS + ["install"] + list(packages)
    )


def purge(packages: List[str]) -> str:
    return run_apt_command(
        ["apt-get"]
        + APT_GET_OPTIONS
        + ["purge", "--auto-remove"]
        + list(packages)
    )


def autoremove() -> str:
    return run_apt_command(["apt-get", "-y", "autoremove", "--purge"])


def clean() -> str:
    return run_apt_command(["apt-get", "clean"])


def fix_broken() -> str:
    """Let apt resolve broken dependencies of the installed packages."""
    configure_pending()
    return run_apt_command(
        ["apt-get"] + APT_GET_OPTIONS + ["--fix-broken", "install"]
    )


def configure_pending() -> str:
    return run_apt_command(["dpkg", "--configure", "-a"])


def get_held_packages() -> List[str]:
    out, _err = system.subp(["apt-mark", "showhold"])
    return [line.strip() for line in out.splitlines() if line.strip()]


def audit_packages() -> str:
    """Return what dpkg --audit reports, empty for a healthy database."""
    out, _err = system.subp(["dpkg", "--audit"])
    return out.strip()


def get_installed_packages_matching(
    patterns: List[str],
) -> List[InstalledPackage]:
    """Return the installed packages matching any of the glob patterns."""
    found = {}
    for pattern in patterns:
        out, _err = system.subp(
            [
                "dpkg-query",
                "-W",
                "-f=${Package}\\t${Installed-Size}\\t${db:Status-Status}\\n",
                pattern,
            ],
            rcs=[0, 1],
        )
        for line in out.splitlines():
            parts = line.split("\t")
            if len(parts) != 3 or parts[2] != "installed":
                continue
            name, size = parts[0], parts[1]
            found[name] = InstalledPackage(
                name=name, size_kb=int(size) if size.isdigit() else 0
            )
    return sorted(found.values())


def debconf_set_selections(selections: List[str]):
    if not selections:
        return
    with tempfile.NamedTemporaryFile(
        mode="w", prefix="ltsupgrade-debconf-", suffix=".txt"
    ) as stream:
        stream.write("\n".join(selections) + "\n")
        stream.flush()
        system.subp(["debconf-set-selections", stream.name])
    LOG.debug("Preseeded %d debconf selections", len(selections))


def write_noninteractive_config():
    """Make apt and dpkg keep new config files without ever prompting."""
    system.write_file(APT_CONF_FILE, APT_CONF_CONTENT, 0o644)
    system.write_file(DPKG_CONF_FILE, DPKG_CONF_CONTENT, 0o644)


def remove_noninteractive_config():
    system.ensure_file_absent(APT_CONF_FILE)
    system.ensure_file_absent(DPKG_CONF_FILE)


def remove_sources_matching(patterns: List[str]) -> List[str]:
    """Delete third-party source files whose name or content matches.

    Matching lines of the main sources.list are dropped as well.
    """
    removed = []
    source_files = glob.glob(os.path.join(APT_SOURCES_DIR, "*.list"))
    source_files += glob.glob(os.path.join(APT_SOURCES_DIR, "*.sources"))
    for source_file in sorted(source_files):
        content = system.load_file(source_file)
        name = os.path.basename(source_file)
        if any(p in name or p in content for p in patterns):
            system.ensure_file_absent(source_file)
            removed.append(source_file)
            log.audit(LOG, "Removed apt source %s", source_file)
    if os.path.exists(APT_SOURCES_LIST):
        lines = system.load_file(APT_SOURCES_LIST).splitlines(True)
        kept = [
            line
            for line in lines
            if line.lstrip().startswith("#")
            or not any(p in line for p in patterns)
        ]
        if len(kept) != len(lines):
            system.write_file(APT_SOURCES_LIST, "".join(kept))
            removed.append(APT_SOURCES_LIST)
            log.audit(
                LOG,
                "Dropped %d lines from %s",
                len(lines) - len(kept),
                APT_SOURCES_LIST,
            )
    return removed


def _terminate(processes: List[system.RunningProcess]):
    for process in processes:
        LOG.warning(
            "Terminating leftover %s process %d", process.name, process.pid
        )
        try:
            os.kill(process.pid, signal.SIGTERM)
        except ProcessLookupError:
            continue
    deadline = time.time() + TERMINATE_GRACE_PERIOD
    while time.time() < deadline:
        if not any(system.is_pid_alive(p.pid) for p in processes):
            return
        time.sleep(1)
    for process in processes:
        if system.is_pid_alive(process.pid):
            LOG.warning("Killing %s process %d", process.name, process.pid)
            try:
                os.kill(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                continue


def get_lock_holders() -> List[system.RunningProcess]:
    """Return the processes holding a package manager lock file open.

    A running apt or unattended-upgrades process that holds none of them
    does not block anything.
    """
    return system.find_file_users(APT_LOCK_FILES)


def clear_transient_blockers():
    """Remove what usually makes a package manager call fail for no reason.

    Processes still holding package manager locks get terminated, then the
    lock files they leave behind are removed and interrupted dpkg runs are
    finished.
    """
    holders = get_lock_holders()
    if holders:
        _terminate(holders)

    if get_lock_holders():
        LOG.warning("Package manager still running, keeping its lock files")
        return

    for lock_file in APT_LOCK_FILES:
        if os.path.exists(lock_file):
            LOG.debug("Removing stale package manager lock %s", lock_file)
            system.ensure_file_absent(lock_file)

    try:
        configure_pending()
    except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
        LOG.warning("dpkg --configure -a failed: %s", e)


def self_healing(func: Callable[[], T], retry_sleeps: List[float]) -> T:
    """Run func, retrying with retry_sleeps between failed attempts.

    Transient blockers are cleared before every attempt, the first included.
    The last failure propagates to the caller.
    """
    wrapped = util.retry(
        (exceptions.ProcessExecutionError, TimeoutExpired),
        retry_sleeps,
        before_attempt=clear_transient_blockers,
    )(func)
    return wrapped()
