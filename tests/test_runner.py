"""
Tests for the agent invocation flow.

Tests cover:
- Successful run: tokens charged, output validated, result persisted
- Denied run never reaches the model
- Model failure and parse failure produce failed results
- Persistence failure does not fail the run
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentgate.agents import AgentRunner, AgentRunResult, RunStatus
from agentgate.config import AgentGateConfig
from agentgate.llm import InvocationRetry, LLMResponse, TokenUsage
from agentgate.parsing import AgentKind
from agentgate.services import build_services
from agentgate.store import KeyCondition, StoreUnavailableError

RESULTS = "agent_results"

PLAN = json.dumps({
    "executionPlan": [{
        "taskId": "t1",
        "title": "Draft pitch",
        "priority": "high",
        "owner": "founder",
        "deadline": "2026-01-07",
        "estimatedHours": 3,
        "dependencies": [],
    }],
    "alerts": [],
    "metrics": {"totalTasks": 1, "highPriorityCount": 1, "blockedCount": 0, "estimatedWeeklyHours": 3},
})


def model_adapter(content=PLAN, input_tokens=100, output_tokens=50):
    adapter = MagicMock()
    adapter.call = AsyncMock(return_value=LLMResponse(
        content=f"Here is your plan:\n```json\n{content}\n```",
        usage=TokenUsage(input_tokens, output_tokens),
        model="m",
        finish_reason="end_turn",
    ))
    return adapter


@pytest.fixture
def services(store, clock):
    config = AgentGateConfig(db_path=":memory:", rate_limit=2, token_limit=1000)
    return build_services(config, store=store, clock=clock)


def make_runner(services, adapter, clock):
    return AgentRunner(
        services.gate,
        services.token_budget,
        adapter,
        retry=InvocationRetry(max_attempts=2, delay_base=0),
        store=services.store,
        results_collection=RESULTS,
        model="m",
        clock=clock,
    )


class TestAgentRunner:
    """Test end-to-end runs."""

    @pytest.mark.asyncio
    async def test_success(self, services, clock):
        adapter = model_adapter()
        runner = make_runner(services, adapter, clock)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.SUCCESS
        assert result.tokens_used == 150
        assert result.output["executionPlan"][0]["taskId"] == "t1"
        assert result.errors == []
        assert result.created_at == "2026-01-05T12:00:00.000Z"

        request = adapter.call.await_args.args[0]
        assert request.prompt == "Plan my week"
        assert request.model == "m"
        assert request.metadata == {"subject_id": "u1", "agent_type": "plan"}

    @pytest.mark.asyncio
    async def test_tokens_charged(self, services, clock):
        runner = make_runner(services, model_adapter(), clock)

        await runner.run("u1", "plan", "Plan my week")

        assert (await services.token_budget.status("u1")).current_usage == 150

    @pytest.mark.asyncio
    async def test_result_persisted(self, services, clock):
        runner = make_runner(services, model_adapter(), clock)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")
        stored = await services.store.get(RESULTS, {"subjectId": "u1", "resultId": result.result_id})

        assert stored == json.loads(json.dumps(result.to_dict()))
        assert stored["status"] == "success"
        assert stored["agentType"] == "plan"

    @pytest.mark.asyncio
    async def test_denied_skips_model(self, services, clock):
        adapter = model_adapter()
        runner = make_runner(services, adapter, clock)

        await runner.run("u1", AgentKind.PLAN, "one")
        await runner.run("u1", AgentKind.PLAN, "two")
        denied = await runner.run("u1", AgentKind.PLAN, "three")

        assert denied.status is RunStatus.DENIED
        assert denied.message.startswith("Rate limit exceeded.")
        assert adapter.call.await_count == 2
        page = await services.store.query(RESULTS, KeyCondition("u1"))
        assert len(page.items) == 2

    @pytest.mark.asyncio
    async def test_denied_when_token_budget_spent(self, services, clock):
        runner = make_runner(services, model_adapter(), clock)
        await services.token_budget.record_usage("u1", 1000)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.DENIED
        assert result.message.startswith("Daily token limit exceeded. Maximum: 1000 tokens.")

    @pytest.mark.asyncio
    async def test_model_failure(self, services, clock):
        adapter = MagicMock()
        adapter.call = AsyncMock(side_effect=ConnectionError("reset"))
        runner = make_runner(services, adapter, clock)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.FAILED
        assert result.message.startswith("Model invocation failed")
        assert result.tokens_used == 0
        assert adapter.call.await_count == 2
        assert (await services.token_budget.status("u1")).current_usage == 0
        stored = await services.store.get(RESULTS, {"subjectId": "u1", "resultId": result.result_id})
        assert stored["status"] == "failed"

    @pytest.mark.asyncio
    async def test_unparsable_output(self, services, clock):
        runner = make_runner(services, model_adapter(content="I cannot do that"), clock)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.FAILED
        assert result.message == "Agent output rejected (ExtractionError)"
        assert result.errors == ["No valid JSON object found in response"]
        assert result.output is None
        assert (await services.token_budget.status("u1")).current_usage == 150

    @pytest.mark.asyncio
    async def test_semantic_rejection(self, services, clock):
        cyclic = json.loads(PLAN)
        cyclic["executionPlan"][0]["dependencies"] = ["t1"]
        runner = make_runner(services, model_adapter(content=json.dumps(cyclic)), clock)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.FAILED
        assert result.message == "Agent output rejected (SemanticError)"
        assert result.errors == ["Task t1 cannot depend on itself"]

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged_not_raised(self, services, clock):
        runner = make_runner(services, model_adapter(), clock)

        with patch.object(
            services.store, "put", AsyncMock(side_effect=StoreUnavailableError("down", OSError(), 3))
        ):
            result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_without_store_nothing_persisted(self, services, clock):
        runner = AgentRunner(services.gate, services.token_budget, model_adapter(), clock=clock)

        result = await runner.run("u1", AgentKind.PLAN, "Plan my week")

        assert result.status is RunStatus.SUCCESS
        page = await services.store.query(RESULTS, KeyCondition("u1"))
        assert page.items == []

    def test_to_dict(self):
        result = AgentRunResult("r1", "u1", AgentKind.GRANT, RunStatus.DENIED, message="no")
        data = result.to_dict()

        assert data["resultId"] == "r1"
        assert data["agentType"] == "grant"
        assert data["status"] == "denied"
        assert "output" not in data
