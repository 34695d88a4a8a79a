import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are too chatty at INFO for a long running relay
NOISY_LOGGERS = ["aiohttp.access", "aiohttp.client", "asyncio"]


def setup_logging(level: str = "INFO"):
    """Configure root logging for the shipper process."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Operator output goes to stdout; Logstash traffic never shares it
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Clear existing handlers and add our configured handler
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return root_logger
