import logging

from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """Route the operator channel to the console through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
