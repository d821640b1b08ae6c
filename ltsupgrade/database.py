"""PostgreSQL backup and restore through the stock client tools.

The client tools run as the postgres system user, which has no access to
the root-only backup directory. They only ever see descriptors opened by
this process: pg_dump writes to its stdout and psql reads its stdin. Final
backups are owned by root and readable by root only.
"""

import datetime
import glob
import gzip
import logging
import os
import shutil
import tempfile
from subprocess import TimeoutExpired
from typing import List, Optional

from ltsupgrade import defaults, exceptions, log, services, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

POSTGRES_USER = "postgres"
POSTGRES_SERVICE = "postgresql"
PSQL_TIMEOUT = 300


def _as_postgres(cmd: List[str]) -> List[str]:
    return ["sudo", "-u", POSTGRES_USER] + cmd


def _psql(sql: str, db_name: Optional[str] = None) -> str:
    cmd = ["psql", "-v", "ON_ERROR_STOP=1", "-tAq", "-c", sql]
    if db_name:
        cmd += ["-d", db_name]
    out, _err = system.subp(_as_postgres(cmd), timeout=PSQL_TIMEOUT)
    return out.strip()


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _quote_ident(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _partial_file(directory: str) -> str:
    fd, path = tempfile.mkstemp(
        prefix=".partial-", suffix=".sql", dir=directory
    )
    os.close(fd)
    return path


def is_postgres_available() -> bool:
    return system.which("pg_dump") is not None


def database_exists(db_name: str) -> bool:
    out = _psql(
        "SELECT 1 FROM pg_database WHERE datname = {}".format(
            _quote_literal(db_name)
        )
    )
    return out == "1"


def role_exists(user: str) -> bool:
    out = _psql(
        "SELECT 1 FROM pg_roles WHERE rolname = {}".format(
            _quote_literal(user)
        )
    )
    return out == "1"


def list_backups(backup_dir: str, db_name: str) -> List[str]:
    """Return the backups of db_name, oldest first."""
    backups = glob.glob(
        os.path.join(backup_dir, "{}_*.sql.gz".format(db_name))
    )
    return sorted(backups, key=lambda path: (os.path.getmtime(path), path))


def latest_backup(backup_dir: str, db_name: str) -> Optional[str]:
    backups = list_backups(backup_dir, db_name)
    return backups[-1] if backups else None


def backup(db_name: str, backup_dir: str, timeout: int) -> str:
    """Dump db_name into a gzip file in backup_dir, returning its path.

    :raises DatabaseBackupError: when PostgreSQL is unusable or the dump is
        empty.
    """
    if not is_postgres_available():
        raise exceptions.DatabaseBackupError(
            db_name=db_name, reason="pg_dump not found"
        )
    if not services.is_active(POSTGRES_SERVICE):
        raise exceptions.DatabaseBackupError(
            db_name=db_name, reason="PostgreSQL service is not running"
        )
    try:
        if not database_exists(db_name):
            raise exceptions.DatabaseBackupError(
                db_name=db_name, reason="database does not exist"
            )
    except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
        raise exceptions.DatabaseBackupError(db_name=db_name, reason=str(e))

    system.ensure_dir(backup_dir, defaults.PRIVATE_DIR_MODE)
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_file = os.path.join(
        backup_dir, "{}_{}.sql.gz".format(db_name, timestamp)
    )

    staging = _partial_file(backup_dir)
    try:
        LOG.info("Creating database backup at: %s", backup_file)
        try:
            with open(staging, "wb") as stream:
                system.subp(
                    _as_postgres(["pg_dump", db_name]),
                    timeout=timeout,
                    stdout_file=stream,
                )
        except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
            raise exceptions.DatabaseBackupError(
                db_name=db_name, reason=str(e)
            )
        if not os.path.getsize(staging):
            raise exceptions.DatabaseBackupError(
                db_name=db_name, reason="backup file is empty"
            )
        with open(staging, "rb") as src:
            with gzip.open(backup_file, "wb", compresslevel=9) as dst:
                shutil.copyfileobj(src, dst)
        os.chmod(backup_file, defaults.ROOT_READABLE_MODE)
    finally:
        system.ensure_file_absent(staging)

    log.audit(LOG, "Database %s backed up to %s", db_name, backup_file)
    return backup_file


def ensure_role_and_database(db_name: str, user: str, password: str):
    """Create the application role and database unless already there."""
    if not role_exists(user):
        _psql(
            "CREATE USER {} WITH PASSWORD {}".format(
                _quote_ident(user), _quote_literal(password)
            )
        )
        log.audit(LOG, "Created database role %s", user)
    if not database_exists(db_name):
        _psql(
            "CREATE DATABASE {} WITH OWNER {}".format(
                _quote_ident(db_name), _quote_ident(user)
            )
        )
        log.audit(LOG, "Created database %s", db_name)


def restore(db_name: str, backup_file: str, timeout: int):
    """Load a gzip backup produced by backup() into db_name."""
    staging = _partial_file(os.path.dirname(backup_file))
    try:
        with gzip.open(backup_file, "rb") as src:
            with open(staging, "wb") as dst:
                shutil.copyfileobj(src, dst)
        LOG.info("Restoring database %s from %s", db_name, backup_file)
        try:
            with open(staging, "rb") as stream:
                system.subp(
                    _as_postgres(["psql", "-q", "-d", db_name]),
                    timeout=timeout,
                    stdin_file=stream,
                )
        except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
            raise exceptions.DatabaseRestoreError(
                db_name=db_name, reason=str(e)
            )
    finally:
        system.ensure_file_absent(staging)
    log.audit(LOG, "Database %s restored from %s", db_name, backup_file)
