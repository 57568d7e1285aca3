"""
Webhook API for crmpilot.

It exposes the following endpoints:
- **GET /health**            - liveness probe for health checks.
- **GET /agents**            - list configured agents.
- **POST /agents/{name}**    - run an agent on a raw webhook body (JSON or text).
- **POST /jobs/lead-replies** - draft and send replies to queued positive leads.

Agents are built once at startup from the settings and kept on ``app.state``; tests can hand
:func:`create_app` ready-made orchestrators instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Dict,
    List,
)

from fastapi import (
    FastAPI,
    HTTPException,
    Request,
)
from fastapi.responses import (
    JSONResponse,
    PlainTextResponse,
    Response,
)

from crmpilot.agent.agent_loop import Orchestrator
from crmpilot.agents.catalog import (
    Integrations,
    build_agents,
    build_broker,
    build_llm,
    build_orchestrator,
    kv_root,
)
from crmpilot.api.models import (
    AgentInfo,
    JobResponse,
    VerificationFailure,
)
from crmpilot.common import (
    AnsiColors,
    colored_print,
)
from crmpilot.config import (
    Settings,
    settings,
)
from crmpilot.core.schema import (
    ResultStyle,
    RunStatus,
)
from crmpilot.jobs.lead_replies import LeadReplyJob
from crmpilot.memory.kv_store import KVStore

logger = logging.getLogger(__name__)


def build_runtime(app: FastAPI, config: Settings) -> Integrations:
    """Wire LLM, broker, KV store and clients into orchestrators on ``app.state``."""
    llm = build_llm(config)
    broker = build_broker(config)
    kv = KVStore(kv_root(config))
    integrations = Integrations.from_settings(config)

    agents = build_agents(config, llm, kv, integrations)
    app.state.orchestrators = {
        name: build_orchestrator(agent, config, llm, broker) for name, agent in agents.items()
    }
    app.state.job = LeadReplyJob(
        llm,
        model=config.PLANNER_MODEL,
        kv=kv,
        smartlead=integrations.smartlead,
        slack=integrations.slack,
        max_tokens=config.LLM_MAX_TOKENS,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )
    logger.info("Configured agents: %s", ", ".join(agents))
    return integrations


def create_app(
    orchestrators: Dict[str, Orchestrator] | None = None,
    job: LeadReplyJob | None = None,
    config: Settings = settings,
) -> FastAPI:
    """Create the FastAPI app; without *orchestrators* everything is built from *config*."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        integrations = None
        if orchestrators is None:
            integrations = build_runtime(app, config)
        else:
            app.state.orchestrators = orchestrators
            app.state.job = job
        try:
            yield
        finally:
            if integrations is not None:
                await integrations.aclose()

    app = FastAPI(
        title="crmpilot API",
        version="0.1.0",
        description="Planner / judge / executor automations for CRM webhooks",
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.get("/agents", response_model=List[AgentInfo], summary="List configured agents")
    async def list_agents(request: Request) -> List[AgentInfo]:
        return [
            AgentInfo(
                name=name,
                description=orchestrator.agent.description,
                result_style=orchestrator.agent.result_style,
            )
            for name, orchestrator in request.app.state.orchestrators.items()
        ]

    @app.post("/agents/{name}", summary="Run an agent on a webhook")
    async def run_agent(name: str, request: Request) -> Response:
        """Hand the raw body and headers to the agent and render its result."""
        orchestrator = request.app.state.orchestrators.get(name)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail=f"Unknown agent '{name}'")

        raw_body = (await request.body()).decode("utf-8", errors="replace")
        result = await orchestrator.handle(raw_body, dict(request.headers))

        if result.status is RunStatus.VERIFICATION_FAILED:
            failure = VerificationFailure(error=result.error or "")
            return JSONResponse(failure.model_dump(), status_code=401)
        if orchestrator.agent.result_style is ResultStyle.STRUCTURED:
            return JSONResponse(result.as_structured())
        return PlainTextResponse(result.as_text())

    @app.post("/jobs/lead-replies", response_model=JobResponse, summary="Reply to positive leads")
    async def lead_replies(request: Request) -> JobResponse:
        job = request.app.state.job
        if job is None:
            raise HTTPException(status_code=503, detail="Lead-reply job is not configured")
        report = await job.run()
        return JobResponse(
            message=report.message,
            replied=report.replied,
            escalated=report.escalated,
            skipped=report.skipped,
            failed=report.failed,
        )

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the app.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload.
    log_level:
        Logging level to use (default from settings if not provided).
    """
    # Lazy import - keeps uvicorn out of the import path for tests
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting crmpilot API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"crmpilot API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "crmpilot.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    run_api(reload=True)
