"""
Billing API routes: hosted checkout and customer portal sessions.

Why:
    Subscriptions are sold through the payment provider's hosted pages. These
    routes only create a provider session and hand its URL to the browser.

Permissions:
    Authenticated callers; rate limited with the `write` limiter per identity.

Failures:
    A missing provider configuration or an unreachable provider surfaces as a
    500 `Failed to create ... session`; details stay in the logs.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.identity_access.domain import TIER_ORDER
from backend.identity_access.policy import AUTHENTICATED
from backend.results import ApiError, Err, Ok, UpstreamError

from .. import wiring
from ..config import SETTINGS
from ..guards import enforce_rate_limit, parse_body, require
from ..responses import boundary

billing_router = APIRouter(tags=["Billing"])
logger = logging.getLogger("buildflow.web.billing")

PAID_PLANS = tuple(t for t in TIER_ORDER if t != "free")


class CheckoutPayload(BaseModel):
    plan: str = Field(..., min_length=1)


@billing_router.post("/api/billing/checkout")
@boundary("create checkout session")
async def create_checkout(request: Request):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    body = await parse_body(request, CheckoutPayload)
    if isinstance(body, Err):
        return body
    plan = body.value.plan.strip().lower()
    if plan not in PAID_PLANS:
        return Err(ApiError.bad_input("Invalid plan"))
    price_id = SETTINGS.stripe_price_id(plan)
    if not price_id:
        raise UpstreamError(f"price_not_configured:{plan}")
    base = SETTINGS.app_base_url
    session = await wiring.run_io(
        wiring.payment_provider().create_checkout_session,
        price_id=price_id,
        customer_id=identity.billing_customer_id,
        customer_email=identity.email,
        client_reference_id=identity.id,
        success_url=f"{base}/settings/billing?checkout=success",
        cancel_url=f"{base}/settings/billing?checkout=cancelled",
    )
    logger.info("Checkout session created identity=%s plan=%s", identity.id[-6:], plan)
    return Ok({"sessionId": session.id, "url": session.url})


@billing_router.post("/api/billing/portal")
@boundary("create portal session")
async def create_portal(request: Request):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    if not identity.billing_customer_id:
        return Err(ApiError.bad_input("No billing account found"))
    session = await wiring.run_io(
        wiring.payment_provider().create_portal_session,
        customer_id=identity.billing_customer_id,
        return_url=f"{SETTINGS.app_base_url}/settings/billing",
    )
    return Ok({"url": session.url})
