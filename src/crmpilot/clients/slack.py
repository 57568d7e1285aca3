"""Posts messages to a Slack incoming webhook."""

import logging
from typing import Sequence

import httpx

logger = logging.getLogger(__name__)


class SlackError(RuntimeError):
    """Raised when the webhook is missing or rejects the message."""


class SlackClient:
    def __init__(
        self,
        webhook_url: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post(self, text: str) -> None:
        if not self._webhook_url:
            raise SlackError("SLACK_WEBHOOK is not set")
        try:
            response = await self._client.post(self._webhook_url, json={"text": text})
        except httpx.HTTPError as exc:
            raise SlackError(f"Slack webhook failed: {exc}") from exc
        if response.is_error:
            raise SlackError(f"Slack webhook -> {response.status_code}: {response.text}")

    async def ping(self, people: Sequence[str], inbox: str, from_email: str) -> str:
        """Mention *people* about a new reply from *from_email* landing in *inbox*."""
        mentions = " ".join(f"<@{person}>" for person in people)
        text = (
            f":mailbox: *Email!*\n{mentions}, you have a new reply from {from_email}. "
            f"Check your inbox ({inbox})."
        )
        await self.post(text)
        logger.info("Pinged %s about a reply from %s", list(people), from_email)
        return text
