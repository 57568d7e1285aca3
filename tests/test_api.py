"""HTTP surface: routing of webhook bodies to orchestrators and result rendering."""

from typing import Any

import pytest
from conftest import (
    FakeLLM,
    text_block,
)
from fastapi.testclient import TestClient

from crmpilot.agent.agent_loop import (
    AgentDefinition,
    Orchestrator,
)
from crmpilot.agent.judge import Judge
from crmpilot.agent.planner_interface import Planner
from crmpilot.api.app import create_app
from crmpilot.core.schema import ResultStyle
from crmpilot.jobs.lead_replies import JobReport


def _orchestrator(name: str, reply: str, **kwargs: Any) -> Orchestrator:
    agent = AgentDefinition(name=name, prompt="Answer.", description=f"{name} agent", **kwargs)
    return Orchestrator(
        agent, Planner(FakeLLM([text_block(reply)]), model="p"), Judge(FakeLLM(), model="j")
    )


class StubJob:
    async def run(self) -> JobReport:
        return JobReport(replied=["a@example.com"], skipped=["b@example.com"])


@pytest.fixture
def client() -> TestClient:
    orchestrators = {
        "chat": _orchestrator("chat", "Hello there."),
        "audit": _orchestrator("audit", "All done.", result_style=ResultStyle.STRUCTURED),
        "guarded": _orchestrator("guarded", "unreachable", verify_webhook=lambda body, h: False),
    }
    with TestClient(create_app(orchestrators=orchestrators, job=StubJob())) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_list_agents(client: TestClient) -> None:
    agents = client.get("/agents").json()
    assert [agent["name"] for agent in agents] == ["chat", "audit", "guarded"]
    assert agents[1]["result_style"] == "structured"


def test_text_agent_returns_plain_text(client: TestClient) -> None:
    response = client.post("/agents/chat", content="who is Ada?")
    assert response.status_code == 200
    assert response.text == "Hello there."


def test_structured_agent_returns_audit_log(client: TestClient) -> None:
    response = client.post("/agents/audit", json={"type": "user.created"})
    body = response.json()
    assert body["success"] is True
    assert body["output"] == "All done."
    assert body["executionLog"] == []
    assert body["iterations"] == 1


def test_failed_verification_is_401(client: TestClient) -> None:
    response = client.post("/agents/guarded", json={"type": "charge.succeeded"})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Webhook verification failed."}


def test_unknown_agent_is_404(client: TestClient) -> None:
    assert client.post("/agents/nope", json={}).status_code == 404


def test_lead_reply_job(client: TestClient) -> None:
    body = client.post("/jobs/lead-replies").json()
    assert body["message"] == "Finished processing positive emails. 1 emails processed."
    assert body["replied"] == ["a@example.com"]
    assert body["skipped"] == ["b@example.com"]


def test_lead_reply_job_not_configured() -> None:
    with TestClient(create_app(orchestrators={}, job=None)) as test_client:
        assert test_client.post("/jobs/lead-replies").status_code == 503
