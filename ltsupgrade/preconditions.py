import logging
from subprocess import TimeoutExpired

from ltsupgrade import apt, exceptions, system, util
from ltsupgrade.config import UpgradeConfig

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))


def check_package_system():
    """The package database must be idle and consistent."""
    busy = apt.get_lock_holders()
    if busy:
        raise exceptions.PackageManagerBusyError(
            processes=", ".join(
                "{} ({})".format(p.name, p.pid) for p in busy
            )
        )

    held = apt.get_held_packages()
    if held:
        raise exceptions.HeldPackagesError(packages=", ".join(held))

    audit_output = apt.audit_packages()
    if audit_output:
        raise exceptions.BrokenPackagesError(audit_output=audit_output)
    LOG.debug("Package system is idle and consistent")


def check_disk_space(path: str, required_mb: int):
    available_mb = system.get_free_disk_space_mb(path)
    if available_mb < required_mb:
        raise exceptions.InsufficientDiskSpaceError(
            path=path, required_mb=required_mb, available_mb=available_mb
        )
    LOG.debug("%dMB free on %s (need %dMB)", available_mb, path, required_mb)


def check_network(host: str):
    if not system.is_host_reachable(host):
        raise exceptions.NetworkUnreachableError(host=host)
    LOG.debug("%s is reachable", host)


def warn_on_low_memory(required_mb: int):
    """Low memory slows the upgrade down but does not block it."""
    try:
        memory = system.get_memory_info()
    except OSError as e:
        LOG.warning("Unable to read memory information: %s", e)
        return
    if memory.available_mb < required_mb:
        LOG.warning(
            "Low memory: %dMB available, %dMB recommended",
            memory.available_mb,
            required_mb,
        )


class SystemPreconditions:
    """Health checks run before any stage, whatever the current state."""

    def __init__(
        self,
        disk_check_path: str,
        min_free_disk_mb: int,
        network_check_host: str,
        min_free_memory_mb: int = 0,
    ) -> None:
        self.disk_check_path = disk_check_path
        self.min_free_disk_mb = min_free_disk_mb
        self.network_check_host = network_check_host
        self.min_free_memory_mb = min_free_memory_mb

    @classmethod
    def from_config(cls, cfg: UpgradeConfig) -> "SystemPreconditions":
        return cls(
            disk_check_path=cfg.disk_check_path,
            min_free_disk_mb=cfg.min_free_disk_mb,
            network_check_host=cfg.network_check_host,
            min_free_memory_mb=cfg.min_free_memory_mb,
        )

    def check(self):
        """Raise a PreconditionFailedError for the first failing check."""
        LOG.info("Checking system preconditions")
        try:
            check_package_system()
        except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
            raise exceptions.BrokenPackagesError(audit_output=str(e))
        check_disk_space(self.disk_check_path, self.min_free_disk_mb)
        check_network(self.network_check_host)
        if self.min_free_memory_mb:
            warn_on_low_memory(self.min_free_memory_mb)
        LOG.info("System preconditions satisfied")
