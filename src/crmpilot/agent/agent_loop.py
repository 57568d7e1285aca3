"""Main orchestration loop for crmpilot."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from crmpilot.agent.broker import (
    BrokerError,
    ToolBroker,
)
from crmpilot.agent.judge import (
    Judge,
    JudgeResponseError,
)
from crmpilot.agent.planner_interface import (
    Planner,
    PlannerResponseError,
)
from crmpilot.agent.sufficiency import SufficiencyEvaluator
from crmpilot.agent.tool_executor import ToolRegistry
from crmpilot.common import to_json
from crmpilot.core.schema import (
    AgentResult,
    HistoryEntry,
    Rejection,
    ResultStyle,
    RunStatus,
    TaskContext,
    ToolDescriptor,
)
from crmpilot.tools import Toolset
from crmpilot.webhooks.router import (
    EventRouter,
    RouteDecision,
)

logger = logging.getLogger(__name__)

WebhookVerifier = Callable[[str, Mapping[str, str]], Union[bool, Awaitable[bool]]]

VERIFICATION_FAILED = "Webhook verification failed."
EXHAUSTED_TEXT = "Ran out of iterations."


@dataclass
class AgentDefinition:
    """Everything that makes one agent different from another: configuration, not control flow."""

    name: str
    prompt: str
    description: str = ""
    toolset: Toolset = field(default_factory=lambda: Toolset("empty"))
    remote_tools: Sequence[str] = ()
    remote_toolkits: Sequence[str] = ()
    identity: str = "default"
    max_iterations: int = 10
    result_style: ResultStyle = ResultStyle.TEXT
    verify_webhook: Optional[WebhookVerifier] = None
    router: Optional[EventRouter] = None
    evaluator: Optional[SufficiencyEvaluator] = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class Orchestrator:
    """
    Drives planner -> judge -> executor until the planner proposes nothing.

    The loop is strictly sequential.  ``iteration`` counts every pass that ended in a rejection or
    an execution and is checked against the ceiling before each planning step.
    """

    def __init__(
        self,
        agent: AgentDefinition,
        planner: Planner,
        judge: Judge,
        broker: ToolBroker | None = None,
        tool_timeout: float | None = 30.0,
    ) -> None:
        self.agent = agent
        self.planner = planner
        self.judge = judge
        self.broker = broker
        self.tool_timeout = tool_timeout

    # ------------------------------------------------------------------ #
    # Inbound request
    # ------------------------------------------------------------------ #
    async def handle(self, raw_body: str, headers: Mapping[str, str] | None = None) -> AgentResult:
        """Verify, parse and route a raw webhook body, then run the loop on it."""
        headers = headers or {}
        verifier = self.agent.verify_webhook
        if verifier is not None and not await self._verify(verifier, raw_body, headers):
            logger.warning("[%s] webhook verification failed", self.agent.name)
            return AgentResult(
                success=False, status=RunStatus.VERIFICATION_FAILED, error=VERIFICATION_FAILED
            )

        payload = parse_payload(raw_body)

        if self.agent.router is not None:
            decision: RouteDecision = await self.agent.router(payload)
            if not decision.run:
                logger.info("[%s] event skipped: %s", self.agent.name, decision.reason)
                return AgentResult(
                    success=True,
                    status=RunStatus.SKIPPED,
                    output=decision.reason,
                    summary=decision.reason,
                )

        return await self.run(payload)

    async def _verify(
        self, verifier: WebhookVerifier, raw_body: str, headers: Mapping[str, str]
    ) -> bool:
        try:
            outcome = verifier(raw_body, headers)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception:  # pylint: disable=broad-except
            logger.exception("[%s] webhook verifier raised", self.agent.name)
            return False
        return bool(outcome)

    # ------------------------------------------------------------------ #
    # The loop
    # ------------------------------------------------------------------ #
    async def run(self, payload: Any) -> AgentResult:
        """Run the planning loop on an already-parsed payload."""
        agent = self.agent
        task = TaskContext(prompt=agent.prompt, payload=payload, identity=agent.identity)
        registry = await self.build_registry(task)
        descriptors = registry.descriptors  # one snapshot for the whole run

        history: List[HistoryEntry] = []
        last_rejection: Rejection | None = None
        guidance: List[str] = []
        if agent.evaluator is not None:
            guidance.extend(await agent.evaluator.load_guidelines(agent.name))

        iteration = 0
        while True:
            if iteration >= agent.max_iterations:
                logger.warning("[%s] ran out of iterations (%d)", agent.name, iteration)
                return self._result(
                    RunStatus.EXHAUSTED, history, iteration, output=EXHAUSTED_TEXT
                )

            # PLANNING
            try:
                proposal = await self.planner.propose(
                    task, descriptors, history, last_rejection, guidance
                )
            except PlannerResponseError as exc:
                logger.error("[%s] %s", agent.name, exc)
                return self._result(RunStatus.PLANNER_ERROR, history, iteration, error=str(exc))

            if not proposal.calls:
                logger.info("[%s] no tool calls proposed, finishing up", agent.name)
                return self._result(
                    RunStatus.DONE,
                    history,
                    iteration + 1,
                    output=proposal.commentary or "No response",
                )

            logger.info(
                "[%s] iteration %d: planner proposed %s",
                agent.name,
                iteration + 1,
                [call.name for call in proposal.calls],
            )

            # JUDGING
            try:
                verdict = await self.judge.review(task, descriptors, proposal.calls, history)
            except JudgeResponseError as exc:
                logger.error("[%s] %s", agent.name, exc)
                return self._result(RunStatus.JUDGE_ERROR, history, iteration, error=str(exc))

            if not verdict.approved:
                logger.info("[%s] judge rejected calls: %s", agent.name, verdict.reason)
                last_rejection = Rejection(calls=proposal.calls, reason=verdict.reason or "")
                iteration += 1
                continue
            last_rejection = None

            # EXECUTING
            results = await registry.execute(proposal.calls, task.identity, proposal.turn)
            iteration += 1
            history.append(HistoryEntry(iteration=iteration, calls=proposal.calls, results=results))
            logger.info(
                "[%s] iteration %d: executed %d calls (%d failed)",
                agent.name,
                iteration,
                len(results),
                sum(result.is_error for result in results),
            )

            if agent.evaluator is not None:
                check = await agent.evaluator.evaluate(task, history)
                if check.sufficient:
                    latest = [result.model_dump(mode="json") for result in results]
                    return self._result(
                        RunStatus.DONE, history, iteration, output=to_json(latest), note=check.reason
                    )
                guidance.append(check.reason)
                await agent.evaluator.remember(agent.name, check.reason)

    async def build_registry(self, task: TaskContext) -> ToolRegistry:
        """Fetch remote descriptors once and merge them with the agent's local tools."""
        remote_specs: List[ToolDescriptor] = []
        if self.broker is not None and (self.agent.remote_tools or self.agent.remote_toolkits):
            try:
                remote_specs = await self.broker.fetch_tools(
                    task.identity, self.agent.remote_tools, self.agent.remote_toolkits
                )
            except BrokerError as exc:
                logger.error("[%s] continuing with local tools only: %s", self.agent.name, exc)
        return ToolRegistry.build(
            self.agent.toolset, remote_specs, broker=self.broker, timeout=self.tool_timeout
        )

    # ------------------------------------------------------------------ #
    # Results
    # ------------------------------------------------------------------ #
    def _result(
        self,
        status: RunStatus,
        history: List[HistoryEntry],
        iterations: int,
        output: str | None = None,
        error: str | None = None,
        note: str | None = None,
    ) -> AgentResult:
        executed = sum(len(entry.calls) for entry in history)
        failed = sum(result.is_error for entry in history for result in entry.results)
        summary = (
            f"{status.value}: {len(history)} executed iterations, {executed} tool calls "
            f"({failed} failed) in {iterations} iterations"
        )
        if note:
            summary = f"{summary}. {note}"
        return AgentResult(
            success=status is RunStatus.DONE,
            status=status,
            output=output,
            summary=summary,
            iterations=iterations,
            exhausted=status is RunStatus.EXHAUSTED,
            execution_log=list(history),
            error=error,
        )


def parse_payload(raw_body: str) -> Any:
    """JSON bodies become structured payloads; anything else is passed on as text."""
    try:
        return json.loads(raw_body)
    except (json.JSONDecodeError, TypeError):
        return raw_body
