import logging

logger = logging.getLogger("movierec")


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach the console handler to the package logger once."""
    logger.setLevel(level.upper())
    if not logger.handlers:
        console_handler = logging.StreamHandler()
        formatter = logging.Formatter("[%(levelname)s] %(asctime)s - %(message)s", "%Y-%m-%d %H:%M:%S")
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    return logger
