"""
crmpilot entry point.

This file handles startup concerns (arg-parsing, env setup, logging) and either serves the webhook
API or runs one agent locally on a payload file.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Tuple

from crmpilot.agents.catalog import (
    Integrations,
    build_agents,
    build_broker,
    build_llm,
    build_orchestrator,
    kv_root,
)
from crmpilot.api.app import run_api
from crmpilot.common import (
    AnsiColors,
    colored_print,
)
from crmpilot.config import (
    Settings,
    settings,
)
from crmpilot.core.schema import (
    AgentResult,
    ResultStyle,
)
from crmpilot.memory.kv_store import KVStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def run_once(
    config: Settings, agent_name: str, raw_body: str
) -> Tuple[AgentResult, ResultStyle]:
    """Run one agent on *raw_body* without the HTTP layer (no webhook verification headers)."""
    llm = build_llm(config)
    broker = build_broker(config)
    integrations = Integrations.from_settings(config)
    try:
        agents = build_agents(config, llm, KVStore(kv_root(config)), integrations)
        if agent_name not in agents:
            raise SystemExit(f"Unknown agent '{agent_name}'. Choose from: {', '.join(agents)}")
        orchestrator = build_orchestrator(agents[agent_name], config, llm, broker)
        result = await orchestrator.handle(raw_body)
        return result, orchestrator.agent.result_style
    finally:
        await integrations.aclose()


def _print_result(result: AgentResult, style: ResultStyle) -> None:
    color = AnsiColors.GREEN if result.success else AnsiColors.RED
    colored_print(f"[{result.status.value}] {result.summary}", AnsiColors.BLUE)
    if style is ResultStyle.STRUCTURED:
        colored_print(json.dumps(result.as_structured(), indent=2), color)
    else:
        colored_print(result.as_text(), color)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for crmpilot.

    ``--mode api`` serves the webhook API; ``--mode run`` runs a single agent on a payload file
    and prints the result.
    """
    if argv is None:
        argv = sys.argv[1:]

    # Ensure the data directory exists
    data_dir = Path(settings.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    if not data_dir.is_dir() or not os.access(data_dir, os.W_OK):
        logger.error("Data directory is not writable: %s", data_dir)
        sys.exit(1)

    parser = argparse.ArgumentParser(description="Run crmpilot CRM automations")
    parser.add_argument(
        "--mode",
        choices=["api", "run"],
        type=str.lower,
        default="api",
        help="Serve the webhook API or run one agent locally (default: api)",
    )
    parser.add_argument("--agent", help="Agent to run in 'run' mode")
    parser.add_argument(
        "--payload", type=Path, help="File holding the webhook body for 'run' mode"
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting crmpilot [%s mode]", args.mode)

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    if not args.agent or args.payload is None:
        parser.error("--mode run requires --agent and --payload")
    raw_body = args.payload.read_text(encoding="utf-8")
    result, style = asyncio.run(run_once(settings, args.agent, raw_body))
    _print_result(result, style)
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
