from __future__ import annotations

import logging
import re
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

REDACTED = "[REDACTED]"

_SECRET_PATTERNS = [
    re.compile(r"sk-ant-[A-Za-z0-9\-_]{8,}"),
    re.compile(r"sk-[A-Za-z0-9\-_]{16,}"),
    re.compile(r"AIza[0-9A-Za-z\-_]{20,}"),
    re.compile(r"Bearer\s+[A-Za-z0-9._\-]{8,}", re.IGNORECASE),
    re.compile(r"x-api-key\s*[:=]\s*[A-Za-z0-9\-_]+", re.IGNORECASE),
    re.compile(r"\b[A-Za-z0-9_]*api[_-]?key[\"']?\s*[:=]\s*[\"']?[^\s&\"',]{8,}", re.IGNORECASE),
    re.compile(r"([?&])key=[^\s&\"']+"),
]

_SERVICE_NAME = "etymon"


def redact_secrets(text: str) -> str:
    """Replace API keys, bearer tokens and key query params with a marker."""
    redacted = text
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            redacted = pattern.sub(lambda m: f"{m.group(1)}key={REDACTED}", redacted)
        else:
            redacted = pattern.sub(REDACTED, redacted)
    return redacted


def safe_error(exc: BaseException | str) -> str:
    message = exc if isinstance(exc, str) else (str(exc) or exc.__class__.__name__)
    return redact_secrets(message)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_secrets(value)
    if isinstance(value, BaseException):
        return safe_error(value)
    if isinstance(value, dict):
        return {key: _redact_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_redact_value(item) for item in value]
    return value


def _redact_processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in list(event_dict.items()):
        event_dict[key] = _redact_value(value)
    return event_dict


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(level: str = "INFO", json_format: bool | None = None, service: str = "etymon") -> None:
    global _SERVICE_NAME
    _SERVICE_NAME = service
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_service_metadata,
        _redact_processor,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


_telemetry_log = get_logger("etymon.telemetry")


def emit_event(name: str, **fields: Any) -> None:
    """Log an operational telemetry event (mode changes, fail-open paths, cache drift)."""
    _telemetry_log.info(name, telemetry=True, **fields)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PhaseMetric:
    name: str
    duration_ms: int
    fetches_used: int = 0
    source_errors: int = 0
    estimated_cost_usd: float = 0.0


@dataclass
class LookupObservability:
    word: str
    started_at: str = field(default_factory=_now_iso)
    ended_at: str | None = None
    total_duration_ms: int = 0
    total_estimated_cost_usd: float = 0.0
    phases: list[PhaseMetric] = field(default_factory=list)
    outcome: str | None = None

    def add_phase(self, metric: PhaseMetric) -> None:
        self.phases.append(metric)
        self.total_estimated_cost_usd += metric.estimated_cost_usd
        self.total_duration_ms += metric.duration_ms

    def finish(self, outcome: str) -> None:
        self.ended_at = _now_iso()
        self.outcome = outcome

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            "phases": [asdict(phase) for phase in self.phases],
        }
