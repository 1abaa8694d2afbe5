import logging
import colorlog
import config

# Between INFO and WARNING; used for confirmed contributions
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'white',
    'SUCCESS': 'bold_green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'bold_red',
}


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Creates a colored console logger, plus a file handler when config.LOG_FILE is set.
    Returns the existing logger if it was already configured.
    """
    logger = colorlog.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    console_handler = colorlog.StreamHandler()
    console_handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        log_colors=LOG_COLORS,
    ))
    logger.addHandler(console_handler)

    if config.LOG_FILE:
        file_handler = logging.FileHandler(config.LOG_FILE, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    return logger


def log_success(logger: logging.Logger, message: str) -> None:
    logger.log(SUCCESS, message)
