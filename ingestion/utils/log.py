"""
Logging setup shared by the CLI and the timer function
"""
import logging

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO") -> int:
    """
    Configure the root logger with a single stream handler

    An unknown level name falls back to INFO.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        The numeric level that was applied
    """
    numeric_level = logging.getLevelName(str(level).upper())
    invalid = not isinstance(numeric_level, int)
    if invalid:
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, force=True)

    if invalid:
        logging.getLogger(__name__).error(f"Invalid log level provided: {level}, using INFO")

    return numeric_level
