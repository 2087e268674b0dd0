"""Billing provider gateways.

``RevenueCatPaymentVerifier`` talks to the subscription provider's REST API;
``OfflinePaymentVerifier`` keeps purchases in memory for local runs and tests.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

import httpx

from domain.exceptions import BillingUnavailableError, PaymentVerificationError
from domain.repositories import PaymentVerifier

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable billing timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RevenueCatPaymentVerifier(PaymentVerifier):
    """PaymentVerifier backed by the RevenueCat subscribers endpoint"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.revenuecat.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get_subscriber(self, customer_id: UUID) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(f"/subscribers/{customer_id}", headers=headers)
        except httpx.TransportError as e:
            raise BillingUnavailableError(f"Billing provider unreachable: {e}") from e

        if response.status_code == 404:
            return {}
        if response.status_code == 429 or response.status_code >= 500:
            raise BillingUnavailableError(f"Billing provider returned {response.status_code}")
        if response.status_code >= 400:
            raise PaymentVerificationError(
                f"Billing provider rejected the lookup for customer {customer_id} ({response.status_code})"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise BillingUnavailableError(
                f"Billing provider sent an unreadable response ({response.status_code})"
            ) from e
        if not isinstance(payload, dict):
            raise BillingUnavailableError("Billing provider sent an unexpected response")
        return payload.get("subscriber") or {}

    async def has_recent_non_refunded_transaction(self, customer_id: UUID, within: timedelta) -> bool:
        subscriber = await self._get_subscriber(customer_id)
        cutoff = datetime.now(timezone.utc) - within

        purchases: List[dict] = []
        for transactions in (subscriber.get("non_subscriptions") or {}).values():
            purchases.extend(transactions or [])
        purchases.extend((subscriber.get("subscriptions") or {}).values())

        for purchase in purchases:
            purchased_at = _parse_timestamp(purchase.get("purchase_date"))
            if purchased_at is None or purchased_at < cutoff:
                continue
            if purchase.get("refunded_at"):
                continue
            return True
        return False

    async def has_active_entitlement(self, customer_id: UUID) -> bool:
        return bool(await self.active_product_ids(customer_id))

    async def active_product_ids(self, customer_id: UUID) -> List[str]:
        subscriber = await self._get_subscriber(customer_id)
        now = datetime.now(timezone.utc)
        products = []
        for name, entitlement in (subscriber.get("entitlements") or {}).items():
            expires_at = _parse_timestamp(entitlement.get("expires_date"))
            # Lifetime entitlements carry no expiry
            if expires_at is None or expires_at > now:
                products.append(entitlement.get("product_identifier") or name)
        return products


class OfflinePaymentVerifier(PaymentVerifier):
    """In-memory purchases, used when no billing API key is configured"""

    def __init__(self):
        self._purchases: Dict[UUID, List[dict]] = {}
        self._entitlements: Dict[UUID, List[str]] = {}

    def record_purchase(
        self,
        customer_id: UUID,
        product_id: str = "booking",
        purchased_at: Optional[datetime] = None,
        refunded: bool = False
    ) -> None:
        self._purchases.setdefault(customer_id, []).append({
            "product_id": product_id,
            "purchased_at": purchased_at or datetime.now(timezone.utc),
            "refunded": refunded,
        })

    def grant_entitlement(self, customer_id: UUID, product_id: str) -> None:
        self._entitlements.setdefault(customer_id, []).append(product_id)

    def revoke_entitlements(self, customer_id: UUID) -> None:
        self._entitlements.pop(customer_id, None)

    async def has_recent_non_refunded_transaction(self, customer_id: UUID, within: timedelta) -> bool:
        cutoff = datetime.now(timezone.utc) - within
        return any(
            p["purchased_at"] >= cutoff and not p["refunded"]
            for p in self._purchases.get(customer_id, [])
        )

    async def has_active_entitlement(self, customer_id: UUID) -> bool:
        return bool(self._entitlements.get(customer_id))

    async def active_product_ids(self, customer_id: UUID) -> List[str]:
        return list(self._entitlements.get(customer_id, []))
