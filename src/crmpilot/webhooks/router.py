"""
Pre-loop event routing.

A router looks at the event field a webhook declares and decides, without any LLM call, whether
the agent loop should run at all.  Routers may also stash data for deferred jobs.
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Collection,
)

from crmpilot.memory.kv_store import KVStore

logger = logging.getLogger(__name__)

EMAILS_NAMESPACE = "agent-crm-emails"

STRIPE_EVENTS = frozenset({"charge.succeeded", "payment_intent.succeeded"})
CLERK_PREFIXES = ("user.", "organization.")


@dataclass(frozen=True)
class RouteDecision:
    run: bool
    reason: str = ""


EventRouter = Callable[[Any], Awaitable[RouteDecision]]


def event_type(payload: Any, field: str) -> str | None:
    if not isinstance(payload, dict):
        return None
    value = payload.get(field)
    return value if isinstance(value, str) else None


def stripe_router(events: Collection[str] = STRIPE_EVENTS) -> EventRouter:
    async def route(payload: Any) -> RouteDecision:
        kind = event_type(payload, "type")
        if kind in events:
            return RouteDecision(run=True, reason=kind)
        return RouteDecision(run=False, reason=f"Ignoring Stripe event '{kind}'.")

    return route


def clerk_router(prefixes: Collection[str] = CLERK_PREFIXES) -> EventRouter:
    async def route(payload: Any) -> RouteDecision:
        kind = event_type(payload, "type")
        if kind and kind.startswith(tuple(prefixes)):
            return RouteDecision(run=True, reason=kind)
        return RouteDecision(run=False, reason=f"Ignoring Clerk event '{kind}'.")

    return route


def reply_record(payload: dict) -> dict:
    """The parts of an ``EMAIL_REPLY`` webhook the lead-reply job needs."""
    message = payload.get("reply_message")
    if not isinstance(message, dict):
        message = {}
    return {
        "from_email": payload.get("from_email") or "",
        "body": message.get("text") or message.get("html") or "",
        "campaign_id": str(payload.get("campaign_id") or ""),
        "stats_id": str(payload.get("stats_id") or ""),
    }


def smartlead_router(kv: KVStore | None = None) -> EventRouter:
    """
    ``EMAIL_REPLY`` runs the loop and, with *kv*, remembers the reply under the lead's address;
    everything else (notably ``LEAD_CATEGORY_UPDATED``) is skipped.
    """

    async def route(payload: Any) -> RouteDecision:
        kind = event_type(payload, "event_type")
        if kind != "EMAIL_REPLY":
            return RouteDecision(run=False, reason=f"Ignoring SmartLead event '{kind}'.")
        lead = payload.get("to_email")
        if kv is not None and isinstance(lead, str) and lead:
            await kv.set(EMAILS_NAMESPACE, lead, reply_record(payload))
            logger.info("Stored reply from lead %s", lead)
        elif kv is not None:
            logger.warning("EMAIL_REPLY without a usable to_email: %r", lead)
        return RouteDecision(run=True, reason=kind)

    return route
