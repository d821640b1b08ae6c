import logging
import sys

from ltsupgrade import exceptions, util
from ltsupgrade.messages import MISSING_YAML_MODULE

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

try:
    import yaml
except ImportError as e:
    LOG.exception(e)
    print(MISSING_YAML_MODULE, file=sys.stderr)
    sys.exit(1)


def safe_load(stream, source: str = "<string>"):
    """Parse YAML, reporting syntax errors against the file they came from."""
    try:
        return yaml.safe_load(stream)
    except yaml.YAMLError as e:
        LOG.debug("Failed to parse %s", source, exc_info=e)
        raise exceptions.InvalidConfigFile(path=source, error=str(e))
