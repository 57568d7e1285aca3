"""Webhook signature verification."""

import logging
from typing import (
    Callable,
    Mapping,
)

import stripe

logger = logging.getLogger(__name__)

STRIPE_SIGNATURE_HEADER = "stripe-signature"


def header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that works for plain dicts too."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def make_stripe_verifier(
    signing_secret: str | None, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE
) -> Callable[[str, Mapping[str, str]], bool]:
    """
    Build a verifier that checks the ``Stripe-Signature`` header of a raw body.

    A missing secret or header fails verification rather than skipping it.
    """

    def verify(raw_body: str, headers: Mapping[str, str]) -> bool:
        signature = header(headers, STRIPE_SIGNATURE_HEADER)
        if not signing_secret:
            logger.error("STRIPE_SIGNING_SECRET is not set; cannot verify webhooks")
            return False
        if not signature:
            logger.warning("Stripe webhook without a signature header")
            return False
        try:
            event = stripe.Webhook.construct_event(
                raw_body, signature, signing_secret, tolerance=tolerance
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Stripe signature verification failed: %s", exc)
            return False
        logger.debug("Verified Stripe event %s", getattr(event, "type", None))
        return True

    return verify
