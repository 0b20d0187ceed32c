from typing import Optional, Tuple
import time
import structlog

from support_agent.domain.errors import ChatEngineError
from support_agent.domain.models.agent_state import (
    ExecutionContext, ToolCallRecord, ToolResult, ToolResultRecord
)
from support_agent.infrastructure.observability.logging import AgentLogger, MetricsCollector
from .tool_registry import ToolRegistry
from .tool_validator import ToolValidator

logger = structlog.get_logger(__name__)


class ToolExecutor:
    """Runs model-requested tool calls

    Unknown tools and schema violations raise fatal ChatEngineErrors. Any
    other failure inside a tool becomes an error result the model can read.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        agent_logger: Optional[AgentLogger] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.registry = registry
        self.validator = ToolValidator(registry)
        self.agent_logger = agent_logger or AgentLogger(__name__)
        self.metrics = metrics

    async def execute(
        self,
        call: ToolCallRecord,
        context: ExecutionContext
    ) -> Tuple[ToolResultRecord, Optional[ToolResult]]:
        """Execute one call, returning the persisted record and the result variant"""

        tool = self.validator.resolve(call.name)
        tool_input = self.validator.validate_input(tool, call.args)

        started = time.perf_counter()
        try:
            raw = await tool.execute(tool_input, context)
            result = self.validator.validate_result(tool, raw)
        except ChatEngineError:
            self._record(call, context, started, success=False)
            raise
        except Exception as exc:
            duration_ms = self._record(call, context, started, success=False, error=str(exc))
            logger.warning("Tool execution failed", tool_name=call.name, exc_info=True)
            record = ToolResultRecord(
                tool_call_id=call.id,
                name=call.name,
                status="error",
                output={"error": f"{type(exc).__name__}: {exc}"},
                duration_ms=duration_ms,
            )
            return record, None

        duration_ms = self._record(call, context, started, success=True, result_kind=result.kind)
        record = ToolResultRecord(
            tool_call_id=call.id,
            name=call.name,
            status="success",
            output=result.model_dump(),
            duration_ms=duration_ms,
        )
        return record, result

    def _record(
        self,
        call: ToolCallRecord,
        context: ExecutionContext,
        started: float,
        success: bool,
        result_kind: Optional[str] = None,
        error: Optional[str] = None
    ) -> float:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        self.agent_logger.log_tool_execution(
            tool_name=call.name,
            user_id=context.user_id,
            input_data=call.args,
            result_kind=result_kind,
            duration_ms=duration_ms,
            success=success,
            error=error,
        )
        if self.metrics is not None:
            self.metrics.record_latency(f"tool.{call.name}", duration_ms, tags={"success": str(success).lower()})
        return duration_ms
