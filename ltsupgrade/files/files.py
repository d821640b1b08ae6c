import logging
import os
from typing import Optional

from ltsupgrade import defaults, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))


class UpgraderFile:
    """A single text file owned by the upgrader.

    Private files are readable by root only. Every write replaces the file
    atomically, so a reader sees either the previous or the new content.
    """

    def __init__(self, name: str, directory: str, private: bool = True):
        self._directory = directory
        self._file_name = name
        self._is_private = private
        self._path = os.path.join(self._directory, self._file_name)

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_private(self) -> bool:
        return self._is_private

    @property
    def is_present(self) -> bool:
        return os.path.exists(self.path)

    def write(self, content: str):
        file_mode = (
            defaults.ROOT_READABLE_MODE
            if self.is_private
            else defaults.WORLD_READABLE_MODE
        )
        if not os.path.isdir(self._directory):
            os.makedirs(
                self._directory,
                mode=defaults.PRIVATE_DIR_MODE if self.is_private else 0o755,
                exist_ok=True,
            )

        system.write_file(self.path, content, file_mode)

    def read(self) -> Optional[str]:
        content = None
        try:
            content = system.load_file(self.path)
        except FileNotFoundError:
            LOG.debug("Tried to load %s but file does not exist", self.path)
        return content

    def delete(self):
        system.ensure_file_absent(self.path)
