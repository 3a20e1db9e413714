from loguru import logger
import os
import sys

from salestrainer.config import settings

logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=settings.LOG_LEVEL,
)

logger.add(
    os.path.join(settings.LOG_DIR, "salestrainer_{time}.log"),
    rotation="100 MB",
    retention="10 days",
    level="DEBUG",
    enqueue=True,
)
