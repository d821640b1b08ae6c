from ltsupgrade.stages.base import Stage
from ltsupgrade.stages.cleanup import CleanupStage
from ltsupgrade.stages.post_setup import PostSetupStage
from ltsupgrade.stages.release_upgrade import ReleaseUpgradeStage

__all__ = [
    "CleanupStage",
    "PostSetupStage",
    "ReleaseUpgradeStage",
    "Stage",
]
