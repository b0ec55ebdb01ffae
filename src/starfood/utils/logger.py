import logging

from rich.logging import RichHandler

from starfood import config

_PKG_PREFIX = "starfood."


class CenteredFormatter(logging.Formatter):
    longest_name_length = 10  # Initial default width

    def __init__(self, fmt=None, datefmt=None, style="%", initial_width=10):
        super().__init__(fmt, datefmt, style)
        CenteredFormatter.longest_name_length = initial_width

    def format(self, record):
        # "starfood.db.orders" -> "db.orders"
        short_name = record.name.removeprefix(_PKG_PREFIX)
        CenteredFormatter.longest_name_length = max(
            CenteredFormatter.longest_name_length, len(short_name)
        )
        record.name = short_name.center(CenteredFormatter.longest_name_length)
        return super().format(record)


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a logger configured with RichHandler for rich output.

    Every module calls this with ``__name__``; the level follows ``config.DEBUG``.
    """
    if name is None:
        name = "starfood"
    logger = logging.getLogger(name)
    log_level = logging.DEBUG if config.DEBUG else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        formatter = CenteredFormatter("[%(name)s]  %(message)s")

        console_handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        logger.addHandler(console_handler)

        logger.propagate = False
        logger.debug(f"Logger for '{name}' initialized with RichHandler.")

    return logger
