"""JSON logging shared by the Lambda entry point and every component.

Each record becomes one JSON object on stdout so CloudWatch Logs Insights can
filter on ``execution_id``, ``component`` and any structured field a caller
passes as a keyword argument.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

LOGGER_PREFIX = "news_digest_bot"

COMPONENTS = (
    "main",
    "feed_fetcher",
    "summarizer",
    "orchestrator",
    "conversation",
    "line_publisher",
    "kagi",
    "config",
    "cloudwatch_metrics",
)

# Record attributes set by logging itself; everything else came in via `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

# Third-party loggers kept at WARNING; botocore echoes request bodies at DEBUG
_QUIET_LOGGERS = ("botocore", "urllib3")


class StructuredFormatter(logging.Formatter):
    """Render a record and its structured fields as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            (name, value)
            for name, value in vars(record).items()
            if name not in _RESERVED_ATTRS and not name.startswith("_")
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ExecutionLogger:
    """Component logger that stamps every record with its execution id.

    Keyword arguments given to any of the level methods are attached to the
    record as structured fields.
    """

    def __init__(self, execution_id: str, component: str = "main"):
        self.execution_id = execution_id
        self.component = component
        self.logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
        self.started_at: datetime | None = None

    def _emit(self, level: int, message: str, fields: dict[str, Any]) -> None:
        context = {"execution_id": self.execution_id, "component": self.component}
        context.update(fields)
        self.logger.log(level, message, extra=context)

    def debug(self, message: str, **fields) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields) -> None:
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, **fields) -> None:
        self._emit(logging.ERROR, message, fields)

    def log_execution_start(self, **fields) -> None:
        """Mark the start of a unit of work; the duration is measured from here."""
        self.started_at = datetime.now(UTC)
        fields["execution_start"] = self.started_at.isoformat()
        self.info(f"Starting {self.component} execution", **fields)

    def log_execution_end(self, success: bool = True, **fields) -> None:
        """Mark the end of a unit of work started with log_execution_start."""
        finished_at = datetime.now(UTC)
        elapsed = None
        if self.started_at is not None:
            elapsed = (finished_at - self.started_at).total_seconds()

        fields.update(
            execution_end=finished_at.isoformat(),
            execution_duration_seconds=elapsed,
            execution_success=success,
        )
        self.info(f"Completed {self.component} execution", **fields)

    def log_item_processing(
        self, item_rank: int, action: str, success: bool = True, **fields
    ) -> None:
        """Per-item progress. Failures are warnings since one item never fails a run."""
        self._emit(
            logging.INFO if success else logging.WARNING,
            f"Item {action}: #{item_rank}",
            {"item_rank": item_rank, "action": action, "success": success, **fields},
        )

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        self.info("Execution metrics", metrics=metrics)


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger.

    Lambda preinstalls a plain-text handler on the root logger, so any
    existing handlers are dropped first.

    Args:
        log_level: Name of the level (DEBUG, INFO, WARNING, ERROR)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(stdout_handler)

    logging.getLogger(LOGGER_PREFIX).setLevel(level)
    for component in COMPONENTS:
        component_logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
        component_logger.setLevel(level)
        component_logger.propagate = True

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_execution_logger(
    component: str, execution_id: str | None = None
) -> ExecutionLogger:
    """Return an ExecutionLogger for ``component``.

    A timestamp-based execution id is generated when none is given.
    """
    if not execution_id:
        execution_id = f"exec_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    return ExecutionLogger(execution_id, component)
