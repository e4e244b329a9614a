import json
import logging
import sys

LOGGER_NAME = "ipn_membership"

TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the delivery's ``txn_id`` when there is one."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        txn_id = getattr(record, "txn_id", None)
        if txn_id:
            payload["txn_id"] = txn_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit JSON lines instead of the human-readable format

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of ipn_membership."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)


class DeliveryLogger(logging.LoggerAdapter):
    """Tags every record with the IPN transaction id being processed."""

    def process(self, msg, kwargs):
        txn_id = self.extra.get("txn_id")
        kwargs["extra"] = {**kwargs.get("extra", {}), "txn_id": txn_id}
        return f"[txn={txn_id or '-'}] {msg}", kwargs


def delivery_logger(txn_id: str | None, name: str = "pipeline") -> DeliveryLogger:
    """Get a logger that tags records with ``txn_id``."""
    return DeliveryLogger(get_logger(name), {"txn_id": txn_id})
