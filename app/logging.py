import logging, sys
from app.settings import settings

NOISY_LOGGERS = ("httpx", "httpcore", "qdrant_client", "pdfminer")


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    if settings.EVALUATION_LOG_FILE:
        # full stage-by-stage trace for debugging evaluations
        fh = logging.FileHandler(settings.EVALUATION_LOG_FILE, mode="a", encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logging.getLogger("domain").addHandler(fh)
