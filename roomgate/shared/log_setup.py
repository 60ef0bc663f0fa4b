import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", debug: bool = False) -> None:
    """Replace loguru's default sink once at startup. `debug` forces DEBUG."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else level.upper(), format=LOG_FORMAT)
