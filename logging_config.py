import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """
    Configure process-wide logging.
    Called once from the FastAPI lifespan hook and from standalone scripts.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
