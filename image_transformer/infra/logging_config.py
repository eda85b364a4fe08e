# image_transformer/infra/logging_config.py
import json
import logging
import sys
from datetime import datetime, timezone

# Record attributes attached by LogContext, with their console tag
CONTEXT_FIELDS = (("request_id", "req"), ("upstream_host", "host"))

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "PIL": logging.WARNING,
}


def _context(record: logging.LogRecord) -> dict:
    return {
        name: getattr(record, name)
        for name, _ in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line (prod)"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            **_context(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output (dev)"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, self.RESET)
        context = _context(record)
        tags = [
            f"{tag}={str(context[name])[:8] if name == 'request_id' else context[name]}"
            for name, tag in CONTEXT_FIELDS
            if name in context
        ]
        suffix = f" [{' '.join(tags)}]" if tags else ""
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        line = f"{color}[{stamp}] {record.levelname:8}{self.RESET} {record.name}{suffix} - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Route all logging to stdout.

    Args:
        level: Root log level name
        use_json: JSON lines instead of colored console output
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """Logger that stamps request_id / upstream_host onto every record"""

    def __init__(self, logger: logging.Logger, **context):
        super().__init__(logger, {k: v for k, v in context.items() if v is not None})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs
