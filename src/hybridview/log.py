import logging

from rich.logging import RichHandler

from hybridview import settings


def configure_logging(level: str | int = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # asyncpg is chatty at DEBUG
    logging.getLogger("asyncpg").setLevel(max(logging.getLogger().level, logging.INFO))
