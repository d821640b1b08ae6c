import logging

from ltsupgrade import apt, database, exceptions, services, snap, util
from ltsupgrade.stages.base import Stage, preseed_grub_install_device

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

UPDATE_MANAGER_PACKAGE = "update-manager-core"


class CleanupStage(Stage):
    """Strip the 20.04 host down to what survives the release upgrades.

    The database backup and the installation of the release upgrader are
    mandatory; the rest only warns, since a half removed package does not
    stop do-release-upgrade.
    """

    name = "cleanup"

    def execute(self):
        cleanup_cfg = self.cfg.cleanup

        LOG.info("Pre-configuring package removal options")
        apt.debconf_set_selections(cleanup_cfg["debconf_selections"])
        apt.write_noninteractive_config()

        self.backup_database()

        self.cleanup_services(
            cleanup_cfg["services_to_stop"], cleanup_cfg["services_to_keep"]
        )
        self.cleanup_packages(cleanup_cfg["package_patterns"])
        self.best_effort(
            "Source cleanup",
            apt.remove_sources_matching,
            cleanup_cfg["source_patterns"],
        )
        self.refresh_packages()
        self.best_effort(
            "GRUB install device preseed", preseed_grub_install_device
        )
        LOG.info("Pre-upgrade cleanup completed")

    def backup_database(self):
        db_cfg = self.cfg.database
        db_name = db_cfg["name"]
        if not database.is_postgres_available():
            # an earlier run may have purged PostgreSQL after backing it up
            backup_file = database.latest_backup(self.cfg.backup_dir, db_name)
            if backup_file is None:
                raise exceptions.DatabaseBackupError(
                    db_name=db_name,
                    reason="pg_dump not found and no earlier backup exists",
                )
            LOG.warning(
                "PostgreSQL is gone, reusing earlier backup %s", backup_file
            )
            return
        database.backup(
            db_name, self.cfg.backup_dir, db_cfg["backup_timeout"]
        )

    def cleanup_services(self, services_to_stop, services_to_keep):
        LOG.info("Starting services cleanup")
        for service in services_to_keep:
            if not services.is_active(service):
                LOG.info("Starting %s service", service)
                services.start(service)
            services.enable(service)
        for service in services_to_stop:
            if service in services_to_keep:
                continue
            LOG.info("Stopping and disabling %s", service)
            services.stop_disable_mask(service)

    def cleanup_packages(self, patterns):
        LOG.info("Starting package cleanup")
        self.best_effort("Snap removal", snap.remove_all_snaps)
        self.log_free_space("Initial")

        installed = self.best_effort(
            "Package lookup", apt.get_installed_packages_matching, patterns
        )
        for package in installed or []:
            LOG.info(
                "Removing package: %s (%d KB)", package.name, package.size_kb
            )
            self.best_effort(
                "Removal of {}".format(package.name), apt.purge, [package.name]
            )

        self.best_effort("apt-get autoremove", apt.autoremove)
        self.best_effort("apt-get clean", apt.clean)
        snap.remove_snap_directories()
        self.log_free_space("Final")

    def refresh_packages(self):
        LOG.info("Refreshing the current release before upgrading")
        self.best_effort("apt-get update", apt.update)
        self.best_effort("apt-get upgrade", apt.upgrade)
        self.best_effort("apt-get dist-upgrade", apt.dist_upgrade)
        self.best_effort("apt-get autoremove", apt.autoremove)
        self.with_self_healing(
            lambda: apt.install([UPDATE_MANAGER_PACKAGE])
        )
