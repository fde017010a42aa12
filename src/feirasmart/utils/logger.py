import logging

from rich.logging import RichHandler

from feirasmart.utils.config import get_settings


class CenteredFormatter(logging.Formatter):
    """Pads logger names so the message column lines up across modules."""

    name_width = 16

    def format(self, record):
        CenteredFormatter.name_width = max(
            CenteredFormatter.name_width, len(record.name)
        )
        record.name = record.name.center(CenteredFormatter.name_width)
        return super().format(record)


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger that writes through a RichHandler.
    Level is DEBUG when the DEBUG env var is set, INFO otherwise.
    """
    logger = logging.getLogger(name or "feirasmart")
    log_level = logging.DEBUG if get_settings().debug else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(CenteredFormatter("[%(name)s]  %(message)s"))
        handler.setLevel(log_level)
        logger.addHandler(handler)
        logger.propagate = False
        logger.debug(f"Logger '{logger.name}' ready.")

    return logger
