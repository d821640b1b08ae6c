import logging
import os
from typing import Optional

from ltsupgrade import defaults, exceptions, system, util
from ltsupgrade.files import UpgraderFile

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))


class UpgradeLock:
    """
    Context manager for gaining exclusive access to the upgrade.

    The lock file holds the pid of the running orchestrator on a single line.
    A lock whose pid no longer denotes a live process is stale and gets
    reclaimed with a warning, as is a lock left over from before the current
    boot. A live owner is never waited for: contention raises LockHeldError
    right away.

    :param lock_dir: directory holding the lock file
    :raises: LockHeldError if another live process holds the lock
    :raises: InvalidLockFile if the lock file does not contain a pid
    :raises: LockFileWriteError if the lock file cannot be created
    """

    def __init__(self, lock_dir: str, lock_name: str = defaults.LOCK_FILE):
        self.lock_file = UpgraderFile(lock_name, lock_dir, private=True)
        self.acquired = False

    @property
    def path(self) -> str:
        return self.lock_file.path

    def owner_pid(self) -> Optional[int]:
        """Return the pid recorded in the lock file, None without a lock."""
        content = self.lock_file.read()
        if content is None:
            return None
        content = content.strip()
        if not content.isdigit():
            raise exceptions.InvalidLockFile(lock_file_path=self.path)
        return int(content)

    def _written_before_boot(self) -> bool:
        try:
            boot_time = system.get_boot_time()
            lock_mtime = os.path.getmtime(self.path)
        except OSError as e:
            LOG.debug("Unable to compare %s with boot time: %s", self.path, e)
            return False
        return boot_time is not None and lock_mtime < boot_time

    def _check_lock_info(self) -> Optional[int]:
        """Return the pid of a live lock owner, removing a stale lock.

        Pids are reused after a reboot, so a lock from before the current
        boot, or one naming this very process, is stale whatever the pid.
        """
        lock_pid = self.owner_pid()
        if lock_pid is None:
            return None
        if lock_pid == os.getpid():
            reason = "pid now belongs to this process"
        elif self._written_before_boot():
            reason = "lock predates the current boot"
        elif not system.is_pid_alive(lock_pid):
            reason = "process is gone"
        else:
            return lock_pid
        LOG.warning(
            "Removing stale lock file previously held by pid %d (%s)",
            lock_pid,
            reason,
        )
        self.lock_file.delete()
        return None

    def _create_lock_file(self):
        try:
            os.makedirs(
                os.path.dirname(self.path),
                mode=defaults.PRIVATE_DIR_MODE,
                exist_ok=True,
            )
            # O_EXCL: two racing orchestrators cannot both create the record
            fd = os.open(
                self.path,
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                defaults.ROOT_READABLE_MODE,
            )
        except FileExistsError:
            lock_pid = self.owner_pid()
            raise exceptions.LockHeldError(pid=lock_pid)
        except OSError as e:
            raise exceptions.LockFileWriteError(
                lock_file_path=self.path, error=str(e)
            )
        try:
            os.write(fd, "{}\n".format(os.getpid()).encode("utf-8"))
            os.fsync(fd)
        except OSError as e:
            os.close(fd)
            self.lock_file.delete()
            raise exceptions.LockFileWriteError(
                lock_file_path=self.path, error=str(e)
            )
        os.close(fd)

    def acquire(self):
        lock_pid = self._check_lock_info()
        if lock_pid is not None:
            raise exceptions.LockHeldError(pid=lock_pid)
        self._create_lock_file()
        self.acquired = True
        LOG.debug("Acquired lock %s for pid %d", self.path, os.getpid())

    def release(self):
        """Remove the lock file, but only when we are its owner."""
        try:
            lock_pid = self.owner_pid()
        except exceptions.InvalidLockFile:
            LOG.warning("Not releasing unreadable lock file %s", self.path)
            return
        if lock_pid is None:
            return
        if lock_pid != os.getpid():
            LOG.warning(
                "Not releasing lock %s owned by pid %d", self.path, lock_pid
            )
            return
        self.lock_file.delete()
        self.acquired = False
        LOG.debug("Released lock %s", self.path)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, _exc_type, _exc_value, _traceback):
        self.release()
