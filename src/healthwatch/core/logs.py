"""Logger helpers shared by the core components."""

import logging

_ROOT_LOGGER_NAME = "healthwatch"

logging.getLogger(_ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``healthwatch`` hierarchy.

    Args:
        name: Usually ``__name__`` of the calling module. Names outside the
            package are nested under ``healthwatch``.

    Returns:
        A stdlib Logger.
    """
    if name != _ROOT_LOGGER_NAME and not name.startswith(_ROOT_LOGGER_NAME + "."):
        name = f"{_ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def log_exception(logger: logging.Logger, message: str, **attributes: str | int | float | bool) -> None:
    """Log the active exception with structured extras.

    Must be called from inside an ``except`` block.
    """
    logger.exception(message, extra=attributes)
