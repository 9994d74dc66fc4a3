import logging
import sys
from collections.abc import MutableMapping
from typing import Any

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter

from .config import settings


def setup_logging() -> None:
    """Configure OpenTelemetry logging with a console exporter."""

    # 1. Setup OpenTelemetry Logger Provider
    logger_provider = LoggerProvider()

    console_exporter = ConsoleLogRecordExporter()
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(console_exporter))

    set_logger_provider(logger_provider)

    # 2. Attach OTel LoggingHandler to Python's root logger
    handler = LoggingHandler(
        level=getattr(logging, settings.LOG_LEVEL), logger_provider=logger_provider
    )

    logging.getLogger().addHandler(handler)
    logging.getLogger().setLevel(settings.LOG_LEVEL)

    # Plain stdout handler so startup output is not delayed by OTel batching
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.getLogger().addHandler(stream_handler)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges bound context into every call's ``extra``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def bind_logger(logger: logging.Logger, **context: Any) -> ContextLogger:
    """Return a logger that attaches ``context`` to every record it emits."""
    return ContextLogger(logger, context)


logger = logging.getLogger("webhook_ca")
