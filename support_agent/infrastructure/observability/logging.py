import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import os

# Context variables bound per chat turn and copied onto every entry
TURN_CONTEXT_KEYS = ("context_id", "user_id", "attempt")


def build_processors(log_format: str) -> List[Any]:
    """Processor chain shared by every logger of the service"""

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]
    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    return processors + [renderer]


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "support-agent"
) -> None:
    """Route structlog through stdlib logging on stdout"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    structlog.configure(
        processors=build_processors(log_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp entries and attach the current turn identifiers"""

    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

    bound = structlog.contextvars.get_contextvars()
    for key in TURN_CONTEXT_KEYS:
        if key in bound:
            event_dict.setdefault(key, bound[key])

    return event_dict


class AgentLogger:
    """Domain events of the conversation engine"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_tool_execution(
        self,
        tool_name: str,
        user_id: str,
        input_data: Dict[str, Any],
        result_kind: Optional[str] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """One tool call, successful or not"""

        log = self.logger.info if success else self.logger.warning
        log(
            "tool_execution",
            tool_name=tool_name,
            user_id=user_id,
            input_data=input_data,
            result_kind=result_kind,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_wizard_transition(
        self,
        user_id: str,
        wizard: str,
        from_state: str,
        to_state: str,
        reason: Optional[str] = None
    ):
        self.logger.info(
            "wizard_transition",
            user_id=user_id,
            wizard=wizard,
            transition=f"{from_state} -> {to_state}",
            reason=reason
        )


agent_logger = AgentLogger("support_agent")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms or 0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process latencies and counters, each sample also emitted as a log event"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(f"latency.{operation}", LatencyStats()).add(duration_ms)
        agent_logger.logger.info(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        agent_logger.logger.info(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Latency aggregates and counter totals keyed by metric name"""

        summary: Dict[str, Any] = {key: stats.summary() for key, stats in self.latencies.items()}
        summary.update(self.counters)
        return summary
