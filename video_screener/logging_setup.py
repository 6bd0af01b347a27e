import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# httpx logs every classifier request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(log_level: str = "INFO", data_dir: str = "/app/data") -> logging.Logger:
    """Setup rotating file logger to {data_dir}/worker/log.log plus console output"""

    log_dir = Path(data_dir) / "worker"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("video_screener")
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates on re-initialization
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = log_dir / "log.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if level != getattr(logging, log_level.upper(), None):
        logger.warning(f"Unknown LOG_LEVEL {log_level!r}, using INFO")
    logger.info(f"Logging initialized at {logging.getLevelName(level)}. Log file: {log_file}")
    return logger


def log_exception(logger: logging.Logger, message: str) -> None:
    """Log an error message together with the active traceback"""
    logger.error(message, exc_info=True)
