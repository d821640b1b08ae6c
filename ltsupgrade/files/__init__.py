from ltsupgrade.files.files import UpgraderFile

__all__ = [
    "UpgraderFile",
]
