import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

logger = logging.getLogger(__name__)

DISTRIBUTION_NAME = "rbacsync"


def get_version() -> str:
    """
    Get the installed version of rbacsync.

    Returns 'dev' when the distribution metadata is missing, which is the case when
    running straight from a source checkout.
    """
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        logger.debug("%s package metadata not found, returning 'dev'.", DISTRIBUTION_NAME)
        return "dev"


def get_version_string() -> str:
    """
    Version string printed by `rbacsync --version`, e.g. "rbacsync, version 0.3.0".
    """
    return f"{DISTRIBUTION_NAME}, version {get_version()}"
