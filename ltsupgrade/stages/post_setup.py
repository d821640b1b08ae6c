import logging
import os
import tempfile
from typing import Any, Dict, List

from ltsupgrade import (
    apt,
    database,
    exceptions,
    log,
    services,
    system,
    util,
)
from ltsupgrade.stages.base import Stage

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

# needed to fetch and dearmor repository keys
REPOSITORY_TOOLS = ["gnupg", "curl"]
DOWNLOAD_TIMEOUT = 600


def download(url: str, destination: str):
    system.subp(
        ["curl", "-fsSL", "--retry", "3", "-o", destination, url],
        timeout=DOWNLOAD_TIMEOUT,
    )


def add_apt_repository(repository: Dict[str, Any], codename: str):
    """Install the signing key and the source list of one repository."""
    name = repository["name"]
    with tempfile.TemporaryDirectory() as tmpdir:
        key_file = os.path.join(tmpdir, "key.asc")
        download(repository["key_url"], key_file)
        system.subp(
            [
                "gpg",
                "--batch",
                "--yes",
                "--dearmor",
                "-o",
                repository["keyring"],
                key_file,
            ]
        )
    os.chmod(repository["keyring"], 0o644)
    source = repository["source"].format(codename=codename)
    source_file = os.path.join(apt.APT_SOURCES_DIR, "{}.list".format(name))
    system.write_file(source_file, source + "\n", 0o644)
    log.audit(LOG, "Added apt repository %s: %s", name, source)


class PostSetupStage(Stage):
    """Provision the 24.04 host: packages, database and services."""

    name = "setup"

    def execute(self):
        setup_cfg = self.cfg.post_setup
        LOG.info("Starting post-upgrade setup")

        self.purge_leftovers(setup_cfg["purge_packages"])
        self.add_repositories(setup_cfg["apt_repositories"])
        self.with_self_healing(apt.update)
        self.with_self_healing(
            lambda: apt.install(setup_cfg["install_packages"])
        )
        self.install_debs(setup_cfg["deb_urls"])
        self.setup_database()
        self.setup_services(
            setup_cfg["services_to_enable"], setup_cfg["services_to_disable"]
        )
        apt.remove_noninteractive_config()
        LOG.info("Post-upgrade setup completed")

    def purge_leftovers(self, patterns: List[str]):
        installed = self.best_effort(
            "Package lookup", apt.get_installed_packages_matching, patterns
        )
        names = [package.name for package in installed or []]
        if names:
            LOG.info("Removing leftover packages: %s", ", ".join(names))
            self.best_effort("Leftover removal", apt.purge, names)

    def add_repositories(self, repositories: List[Dict[str, Any]]):
        if not repositories:
            return
        self.with_self_healing(lambda: apt.install(REPOSITORY_TOOLS))
        codename = system.get_release_info().series
        for repository in repositories:
            add_apt_repository(repository, codename)

    def install_debs(self, urls: List[str]):
        if not urls:
            return
        with tempfile.TemporaryDirectory() as tmpdir:
            # apt runs its downloads as _apt, which must read the files
            os.chmod(tmpdir, 0o755)
            paths = []
            for url in urls:
                path = os.path.join(tmpdir, os.path.basename(url))
                LOG.info("Downloading %s", url)
                download(url, path)
                os.chmod(path, 0o644)
                paths.append(path)
            self.with_self_healing(lambda: apt.install(paths))

    def setup_database(self):
        db_cfg = self.cfg.database
        db_name = db_cfg["name"]
        LOG.info("Setting up PostgreSQL")
        backup_file = database.latest_backup(self.cfg.backup_dir, db_name)
        if backup_file is None:
            raise exceptions.DatabaseRestoreError(
                db_name=db_name,
                reason="no backup found in {}".format(self.cfg.backup_dir),
            )
        database.ensure_role_and_database(
            db_name, db_cfg["user"], db_cfg["password"]
        )
        database.restore(db_name, backup_file, db_cfg["backup_timeout"])

    def setup_services(self, to_enable: List[str], to_disable: List[str]):
        LOG.info("Configuring services")
        services.daemon_reload()
        for service in to_enable:
            LOG.info("Enabling and starting %s", service)
            if not services.enable_and_start(service):
                LOG.error("Failed to enable %s", service)
        for service in to_disable:
            services.stop(service)
            services.disable(service)
