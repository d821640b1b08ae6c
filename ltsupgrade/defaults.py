"""
Project-wide default settings

These are in their own file so they can be imported by setup.py before we have
any of our dependencies installed.
"""

import os

# Base directories
UPGRADER_ETC_PATH = "/etc/ubuntu-lts-upgrader"
DEFAULT_BASE_DIR = "/update/upgrade"
SYSTEMD_UNIT_DIR = "/etc/systemd/system"

# Relative paths
CONFIG_FILE = "upgrader.conf"
STATE_FILE = ".upgrade_state"
LOCK_FILE = "upgrade.lock"
LOGS_SUBDIR = "logs"
LOCKS_SUBDIR = "locks"
BACKUPS_SUBDIR = "backups"

DEFAULT_CONFIG_FILE = os.path.join(UPGRADER_ETC_PATH, CONFIG_FILE)

# Log files, routed by level
MAIN_LOG_FILE = "upgrade.log"
ERROR_LOG_FILE = "error.log"
DEBUG_LOG_FILE = "debug.log"
STATS_LOG_FILE = "stats.log"
LOG_MAX_BYTES = 100 * 1024 * 1024
LOG_BACKUP_COUNT = 5
SYSLOG_IDENT = "ubuntu-upgrade"
SYSLOG_SOCKET = "/dev/log"

BOOT_UNIT_NAME = "ubuntu-lts-upgrade.service"

ROOT_READABLE_MODE = 0o600
WORLD_READABLE_MODE = 0o644
PRIVATE_DIR_MODE = 0o700

# Environment handed explicitly to every package manager invocation
APT_ENV = {
    "DEBIAN_FRONTEND": "noninteractive",
    "DEBIAN_PRIORITY": "critical",
    "NEEDRESTART_MODE": "a",
    "UCF_FORCE_CONFFNEW": "1",
    "APT_LISTCHANGES_FRONTEND": "none",
    "APT_KEY_DONT_WARN_ON_DANGEROUS_USAGE": "1",
}

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(filename)s:(%(lineno)d) [%(levelname)s]: %(message)s"
)

CONFIG_DEFAULTS = {
    "base_dir": DEFAULT_BASE_DIR,
    "log_level": "debug",
    # None means <base_dir>/logs
    "log_dir": None,
    "target_versions": ["22.04", "24.04"],
    "min_free_disk_mb": 10240,
    "disk_check_path": "/usr",
    "min_free_memory_mb": 1024,
    "network_check_host": "8.8.8.8",
    # do-release-upgrade of a full package set can take hours
    "release_upgrade_timeout": 6 * 60 * 60,
    "boot_start_timeout": 6 * 60 * 60,
    "retry_attempts": 4,
    "retry_base_delay": 10,
    "reboot_delay_minutes": 1,
    "diagnostic_tail_lines": 20,
    "invocation_command": None,
    "database": {
        "name": "bobe",
        "user": "bobe",
        "password": "bobe",
        "backup_timeout": 3600,
    },
    "cleanup": {
        "services_to_keep": ["auto-ssh"],
        "services_to_stop": [
            "command-executor",
            "flexicore",
            "listensor",
            "recognition",
            "cups",
            "mongod",
            "monit",
            "snapd",
            "postgresql",
        ],
        "package_patterns": [
            "postgresql*",
            "monit*",
            "mongodb*",
            "mongo-tools",
            "openjdk*",
            "cups*",
            "printer-driver-*",
            "hplip*",
            "google-chrome*",
            "chromium*",
            "snapd",
            "libreoffice*",
        ],
        "source_patterns": ["postgresql", "mongodb", "openjdk", "google"],
        "debconf_selections": [
            "postgresql-common postgresql-common/purge-data boolean true",
            "libc6 libraries/restart-without-asking boolean true",
            "grub-pc grub-pc/install_devices_empty boolean false",
            "mdadm mdadm/boot_degraded boolean true",
        ]
        + [
            "postgresql-{v} postgresql-{v}/purge-data boolean true".format(
                v=version
            )
            for version in range(11, 18)
        ],
    },
    "post_setup": {
        "purge_packages": ["snapd", "cups*", "libreoffice*"],
        "apt_repositories": [
            {
                "name": "mongodb-org-8.0",
                "key_url": "https://www.mongodb.org/static/pgp/server-8.0.asc",
                "keyring": "/usr/share/keyrings/mongodb-server-8.0.gpg",
                "source": (
                    "deb [ arch=amd64,arm64 signed-by=/usr/share/keyrings/"
                    "mongodb-server-8.0.gpg ] https://repo.mongodb.org/apt/"
                    "ubuntu noble/mongodb-org/8.0 multiverse"
                ),
            },
            {
                "name": "pgdg",
                "key_url": (
                    "https://www.postgresql.org/media/keys/ACCC4CF8.asc"
                ),
                "keyring": "/etc/apt/trusted.gpg.d/postgresql.gpg",
                "source": (
                    "deb http://apt.postgresql.org/pub/repos/apt "
                    "{codename}-pgdg main"
                ),
            },
        ],
        "install_packages": [
            "openjdk-17-jre-headless",
            "gnupg",
            "curl",
            "mongodb-org",
            "postgresql-17",
            "monit",
        ],
        "deb_urls": [
            "https://dl.google.com/linux/direct/"
            "google-chrome-stable_current_amd64.deb"
        ],
        "services_to_enable": [
            "bobe",
            "mongod",
            "nats-server",
            "command-executor",
            "auto-ssh",
        ],
        "services_to_disable": ["monit"],
    },
    "monitor": {
        "enabled": True,
        "interval": 300,
        "disk_path": "/",
        "disk_threshold": 85,
        "memory_threshold": 90,
        "load_threshold": 8,
        "critical_services": ["ssh"],
        "network_targets": ["archive.ubuntu.com", "security.ubuntu.com"],
        "restart_attempts": 3,
        "restart_delay": 30,
    },
}

CONFIG_FIELD_ENVVAR_ALLOWLIST = [
    "lts_upgrade_log_level",
    "lts_upgrade_log_dir",
]
