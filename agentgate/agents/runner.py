"""
Agent invocation flow.

gate check -> model call (with retry) -> charge tokens -> parse -> persist

A denied request never reaches the model. Model failures and parse
failures both produce a `failed` result rather than an exception, so a
request handler can map every outcome to a response.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..governance import FreeTierGate, TokenBudget
from ..llm import InvocationError, InvocationRetry, LLMAdapter, LLMRequest
from ..parsing import AgentKind, log_parse_result, parse_agent_output
from ..parsing.semantic import PLANNING_HORIZON_DAYS
from ..store import CounterStore, StoreError
from ..utils import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"
    FAILED = "failed"


@dataclass
class AgentRunResult:
    """
    Outcome of one agent invocation.

    Attributes:
        result_id: Unique id, also the sort key of the persisted record
        subject_id: Subject the invocation was charged to
        kind: Agent output variant
        status: success, denied or failed
        output: Validated output (camelCase dict) on success
        tokens_used: Tokens reported by the model (0 if it was not called)
        processing_time_ms: Wall time of the whole flow
        message: Denial or failure reason
        errors: Parse errors
        warnings: Parse warnings
    """
    result_id: str
    subject_id: str
    kind: AgentKind
    status: RunStatus
    output: Optional[Dict[str, Any]] = None
    tokens_used: int = 0
    processing_time_ms: int = 0
    message: str = ""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "resultId": self.result_id,
            "subjectId": self.subject_id,
            "agentType": self.kind.value,
            "status": self.status.value,
            "tokensUsed": self.tokens_used,
            "processingTimeMs": self.processing_time_ms,
            "message": self.message,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "createdAt": self.created_at,
        }
        if self.output is not None:
            data["output"] = self.output
        return data


class AgentRunner:
    """
    Runs one agent invocation end to end.

    Usage:
        runner = AgentRunner(services.gate, services.token_budget, BedrockAdapter())
        result = await runner.run("user-123", AgentKind.PLAN, prompt)
        if result.status is RunStatus.DENIED:
            return 429, result.message
    """

    def __init__(
        self,
        gate: FreeTierGate,
        token_budget: TokenBudget,
        adapter: LLMAdapter,
        retry: Optional[InvocationRetry] = None,
        store: Optional[CounterStore] = None,
        results_collection: Optional[str] = None,
        model: str = "anthropic.claude-3-sonnet-20240229-v1:0",
        max_tokens: int = 2000,
        temperature: float = 0.7,
        horizon_days: int = PLANNING_HORIZON_DAYS,
        clock: Optional[Clock] = None,
    ):
        self.gate = gate
        self.token_budget = token_budget
        self.adapter = adapter
        self.retry = retry or InvocationRetry()
        self.store = store
        self.results_collection = results_collection
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.horizon_days = horizon_days
        self._clock = clock or utc_now

    async def run(
        self,
        subject_id: str,
        kind: Union[AgentKind, str],
        prompt: str,
    ) -> AgentRunResult:
        """
        Invoke the agent for a subject.

        Args:
            subject_id: Subject to charge
            kind: Which output the agent produces
            prompt: Prompt text

        Returns:
            AgentRunResult (denied results are not persisted)
        """
        kind = AgentKind(kind)
        started = time.monotonic()
        now = self._clock()
        result = AgentRunResult(
            result_id=f"result_{uuid.uuid4().hex[:12]}",
            subject_id=subject_id,
            kind=kind,
            status=RunStatus.FAILED,
            created_at=isoformat(now),
        )

        decision = await self.gate.check_free_tier_limits(subject_id)
        if not decision.allowed:
            result.status = RunStatus.DENIED
            result.message = decision.message
            result.processing_time_ms = self._elapsed_ms(started)
            return result

        request = LLMRequest(
            prompt=prompt,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            metadata={"subject_id": subject_id, "agent_type": kind.value},
        )
        try:
            response = await self.retry.execute(lambda: self.adapter.call(request))
        except InvocationError as e:
            result.message = str(e)
            result.processing_time_ms = self._elapsed_ms(started)
            await self._persist(result)
            return result

        result.tokens_used = response.usage.total
        await self.token_budget.record_usage(subject_id, result.tokens_used)

        parsed = parse_agent_output(
            kind, response.content, today=now.date(), horizon_days=self.horizon_days
        )
        log_parse_result(parsed, f"{kind.value} output for {subject_id}")

        result.errors = list(parsed.errors)
        result.warnings = list(parsed.warnings)
        if parsed.success:
            result.status = RunStatus.SUCCESS
            result.output = parsed.data.to_dict()
        else:
            result.message = f"Agent output rejected ({parsed.failure})"

        result.processing_time_ms = self._elapsed_ms(started)
        await self._persist(result)
        logger.info(
            f"Agent {kind.value} for {subject_id} finished: {result.status.value} "
            f"({result.tokens_used} tokens, {result.processing_time_ms}ms)"
        )
        return result

    async def _persist(self, result: AgentRunResult) -> None:
        if self.store is None or not self.results_collection:
            return
        try:
            await self.store.put(self.results_collection, result.to_dict())
        except StoreError as e:
            logger.error(f"Failed to persist result {result.result_id}: {e}")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
