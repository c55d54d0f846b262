"""
Payment provider adapter (checkout and billing-portal sessions).

Design:
- Framework-agnostic; the web layer only sees `PaymentProviderProtocol`.
- `StripeClient` talks to the Stripe REST API with httpx (form-encoded, bearer
  secret key). Transport errors and non-2xx answers raise `UpstreamError`; the
  caller's boundary maps that to a 500. No retries here.
- `NullPaymentProvider` signals that billing is not configured.

Security:
- Never log the secret key or full provider responses.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol
import logging

import httpx

from backend.results import UpstreamError

logger = logging.getLogger("buildflow.billing")

STRIPE_API_BASE = "https://api.stripe.com/v1"


@dataclass(frozen=True)
class ProviderSession:
    id: str
    url: str


class PaymentProviderProtocol(Protocol):
    def create_checkout_session(
        self, *, price_id: str, customer_id: Optional[str], customer_email: str, client_reference_id: str,
        success_url: str, cancel_url: str,
    ) -> ProviderSession: ...

    def create_portal_session(self, *, customer_id: str, return_url: str) -> ProviderSession: ...


class NullPaymentProvider:
    """Fallback provider used when STRIPE_SECRET_KEY is unset."""

    def create_checkout_session(self, **kwargs) -> ProviderSession:  # noqa: D401
        raise UpstreamError("payment_provider_not_configured")

    def create_portal_session(self, **kwargs) -> ProviderSession:  # noqa: D401
        raise UpstreamError("payment_provider_not_configured")


class StripeClient:
    def __init__(self, secret_key: str, *, base_url: str = STRIPE_API_BASE, transport: httpx.BaseTransport | None = None,
                 timeout: float = 10.0) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=timeout,
            transport=transport,
        )

    def _post(self, path: str, data: dict) -> ProviderSession:
        try:
            r = self._client.post(path, data=data)
        except httpx.HTTPError as exc:
            logger.warning("Stripe request %s failed: %s", path, exc.__class__.__name__)
            raise UpstreamError("payment_provider_unreachable") from exc
        if r.status_code >= 400:
            code = ""
            try:
                code = str((r.json().get("error") or {}).get("code") or "")
            except ValueError:
                pass
            logger.warning("Stripe %s answered %s (%s)", path, r.status_code, code or "no code")
            raise UpstreamError(f"payment_provider_status_{r.status_code}")
        body = r.json()
        sid = body.get("id")
        url = body.get("url")
        if not sid or not url:
            raise UpstreamError("payment_provider_bad_response")
        return ProviderSession(id=str(sid), url=str(url))

    def create_checkout_session(
        self, *, price_id: str, customer_id: Optional[str], customer_email: str, client_reference_id: str,
        success_url: str, cancel_url: str,
    ) -> ProviderSession:
        data = {
            "mode": "subscription",
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": client_reference_id,
            "allow_promotion_codes": "true",
        }
        if customer_id:
            data["customer"] = customer_id
        else:
            data["customer_email"] = customer_email
        return self._post("/checkout/sessions", data)

    def create_portal_session(self, *, customer_id: str, return_url: str) -> ProviderSession:
        return self._post("/billing_portal/sessions", {"customer": customer_id, "return_url": return_url})
