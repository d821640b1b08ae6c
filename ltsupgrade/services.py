"""systemctl helpers shared by the boot hook, the stages and the monitor."""

import logging
import time
from subprocess import TimeoutExpired
from typing import List, Optional  # noqa: F401

from ltsupgrade import exceptions, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

SYSTEMCTL_TIMEOUT = 120.0


def _unit(name: str) -> str:
    if "." in name:
        return name
    return name + ".service"


def systemctl(*args: str, timeout: Optional[float] = SYSTEMCTL_TIMEOUT):
    return system.subp(["systemctl"] + list(args), timeout=timeout)


def daemon_reload():
    systemctl("daemon-reload")


def unit_exists(name: str) -> bool:
    out, _err = system.subp(
        ["systemctl", "list-unit-files", "--no-legend", _unit(name)],
        rcs=[0, 1],
    )
    return bool(out.strip())


def is_active(name: str) -> bool:
    try:
        system.subp(["systemctl", "is-active", "--quiet", _unit(name)])
    except exceptions.ProcessExecutionError:
        return False
    return True


def _best_effort(action: str, name: str) -> bool:
    """Run systemctl action on name, logging instead of raising."""
    try:
        systemctl(action, _unit(name))
    except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
        LOG.warning("Unable to %s %s: %s", action, name, e)
        return False
    LOG.debug("Ran systemctl %s %s", action, name)
    return True


def start(name: str) -> bool:
    return _best_effort("start", name)


def stop(name: str) -> bool:
    return _best_effort("stop", name)


def restart(name: str) -> bool:
    return _best_effort("restart", name)


def enable(name: str) -> bool:
    return _best_effort("enable", name)


def disable(name: str) -> bool:
    return _best_effort("disable", name)


def mask(name: str) -> bool:
    return _best_effort("mask", name)


def unmask(name: str) -> bool:
    return _best_effort("unmask", name)


def stop_disable_mask(name: str):
    """Make sure name stays down across the upgrade reboots."""
    if not unit_exists(name):
        LOG.debug("Service %s not installed, nothing to stop", name)
        return
    stop(name)
    disable(name)
    mask(name)


def enable_and_start(name: str) -> bool:
    if not unit_exists(name):
        LOG.warning("Service %s not installed, unable to enable it", name)
        return False
    unmask(name)
    return enable(name) and start(name)


def restart_service_with_retry(
    name: str, attempts: int = 3, delay: float = 30
) -> bool:
    """Restart name until it reports active.

    The wait before attempt n is n * delay.
    """
    for attempt in range(1, attempts + 1):
        LOG.info("Restarting %s (attempt %d/%d)", name, attempt, attempts)
        restart(name)
        time.sleep(attempt * delay)
        if is_active(name):
            LOG.info("Service %s is active again", name)
            return True
    LOG.error("Unable to restart %s after %d attempts", name, attempts)
    return False
