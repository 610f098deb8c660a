import logging

LOGGER_NAME = "coursepay"
LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(name)s - %(funcName)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single console handler to the package logger. Safe to call twice."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())

    if not any(getattr(h, "_coursepay", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._coursepay = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    # Avoid duplicate lines when uvicorn configures the root logger too
    logger.propagate = False
    return logger
