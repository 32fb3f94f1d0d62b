import logging
import sys
from logging import StreamHandler

from happenings.config.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[StreamHandler(sys.stdout)],
    )
    # SQL echo is controlled by LOG_DB, keep the engine logger quiet otherwise
    if not settings.LOG_DB:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
