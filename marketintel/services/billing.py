"""Subscription plans and the payment server client.

The payment server wraps the gateway's order and subscription APIs. This
client only talks to that server; card details never pass through here.
A checkout is complete only after the server has verified the gateway
signature.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import requests

from marketintel.config import BillingConfig
from marketintel.errors import BillingError
from marketintel.services.rbac import Role

logger = logging.getLogger(__name__)

_RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

CHECKOUT_NAME = "VentureFlow IQ"
SUBSCRIPTION_CYCLES = 12


class BillingPeriod(Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Plan:
    """A subscription tier and its prices in rupees.

    Attributes:
        role: Role granted by the plan.
        name: Display name.
        monthly_price: Price per month; 0 for the free tier.
        yearly_price: Price per year, None when only monthly billing exists.
        features: Feature bullet points.
    """

    role: Role
    name: str
    monthly_price: int
    yearly_price: int | None = None
    features: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_free(self) -> bool:
        return self.monthly_price == 0

    @property
    def yearly_savings(self) -> int:
        """Saving of yearly billing over twelve monthly payments."""
        if self.yearly_price is None:
            return 0
        return self.monthly_price * 12 - self.yearly_price

    def price(self, period: BillingPeriod) -> int:
        """Price for a billing period.

        Raises:
            ValueError: If the plan has no yearly price and yearly is asked.
        """
        if period is BillingPeriod.YEARLY:
            if self.yearly_price is None:
                raise ValueError(f"{self.name} has no yearly billing")
            return self.yearly_price
        return self.monthly_price


PLANS: dict[Role, Plan] = {
    Role.FREEMIUM: Plan(
        role=Role.FREEMIUM,
        name="Free",
        monthly_price=0,
        features=(
            "Basic company information",
            "Address & contact details",
            "Up to 5 company views per month",
            "Basic search functionality",
        ),
    ),
    Role.PREMIUM: Plan(
        role=Role.PREMIUM,
        name="Premium",
        monthly_price=999,
        yearly_price=9999,
        features=(
            "Everything in Free",
            "Key officials information",
            "Financial information & metrics",
            "Unlimited company views",
            "Export to JSON/CSV",
            "Watchlist functionality",
            "Advanced search filters",
            "Priority support",
        ),
    ),
    Role.ENTERPRISE: Plan(
        role=Role.ENTERPRISE,
        name="Enterprise",
        monthly_price=2999,
        yearly_price=29999,
        features=(
            "Everything in Premium",
            "Funding & investment data",
            "Regulatory & legal information",
            "News & relationships",
            "Bulk operations",
            "API access",
            "Custom reports",
            "Dedicated account manager",
            "White-label options",
        ),
    ),
}


def get_plan(role: Role) -> Plan:
    """Plan for a role. Admins are shown the Enterprise plan."""
    if role is Role.ADMIN:
        return PLANS[Role.ENTERPRISE]
    return PLANS[role]


class BillingClient:
    """HTTP client for the payment server.

    Retries with exponential backoff on 429/5xx status codes and on
    connection errors.

    Args:
        config: Server URL, checkout key, token and retry settings.
    """

    def __init__(self, config: BillingConfig) -> None:
        self._config = config
        self._base_url = config.api_base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        action: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request with retry logic and return the JSON body.

        Args:
            method: "GET" or "POST".
            path: Endpoint path below the base URL.
            action: Human-readable action for errors, e.g. "create order".
            payload: JSON body for POST requests.

        Raises:
            BillingError: On a non-retryable error status, or when all
                retries are exhausted.
        """
        url = f"{self._base_url}{path}"
        retries = self._config.max_retries
        last_error = ""

        for attempt in range(retries):
            try:
                if method == "GET":
                    response = requests.get(
                        url, headers=self._headers(),
                        timeout=self._config.request_timeout,
                    )
                else:
                    response = requests.post(
                        url, json=payload, headers=self._headers(),
                        timeout=self._config.request_timeout,
                    )
            except requests.RequestException as e:
                last_error = str(e)
                if attempt < retries - 1:
                    sleep_time = self._config.backoff_factor * (2**attempt)
                    logger.warning(
                        "Billing request failed: %s. Retrying in %.1fs "
                        "(attempt %d/%d)",
                        e, sleep_time, attempt + 1, retries,
                    )
                    time.sleep(sleep_time)
                continue

            if response.status_code in _RETRY_STATUS_CODES:
                last_error = f"status {response.status_code}"
                if attempt < retries - 1:
                    sleep_time = self._config.backoff_factor * (2**attempt)
                    logger.warning(
                        "Billing server returned %d, retrying in %.1fs "
                        "(attempt %d/%d)",
                        response.status_code, sleep_time, attempt + 1, retries,
                    )
                    time.sleep(sleep_time)
                continue

            if not response.ok:
                raise BillingError(
                    f"Failed to {action}: status {response.status_code}"
                )
            body = response.json()
            return body if isinstance(body, dict) else {"data": body}

        logger.error("Billing %s failed after %d attempts", action, retries)
        raise BillingError(f"Failed to {action}: {last_error}")

    # -- Orders and subscriptions ------------------------------------------

    def create_order(
        self,
        amount: int,
        currency: str | None = None,
        receipt: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Create a one-off order. *amount* is in rupees; sent in paise."""
        stamp = now or datetime.now(UTC)
        return self._request("POST", "/create-order", "create order", {
            "amount": amount * 100,
            "currency": currency or self._config.currency,
            "receipt": receipt or f"receipt_{int(stamp.timestamp() * 1000)}",
        })

    def create_subscription(self, plan_id: str, customer_id: str) -> dict[str, Any]:
        return self._request("POST", "/create-subscription", "create subscription", {
            "plan_id": plan_id,
            "customer_id": customer_id,
            "total_count": SUBSCRIPTION_CYCLES,
            "quantity": 1,
        })

    def verify_payment(
        self, payment_id: str, order_id: str, signature: str,
    ) -> dict[str, Any]:
        """Have the server verify a checkout callback.

        Raises:
            BillingError: If the server rejects the signature.
        """
        try:
            return self._request("POST", "/verify-payment", "verify payment", {
                "razorpay_payment_id": payment_id,
                "razorpay_order_id": order_id,
                "razorpay_signature": signature,
            })
        except BillingError as e:
            raise BillingError(f"Payment verification failed: {e}") from e

    def verify_subscription(
        self, payment_id: str, subscription_id: str, signature: str,
    ) -> dict[str, Any]:
        try:
            return self._request(
                "POST", "/verify-subscription", "verify subscription", {
                    "razorpay_payment_id": payment_id,
                    "razorpay_subscription_id": subscription_id,
                    "razorpay_signature": signature,
                },
            )
        except BillingError as e:
            raise BillingError(f"Subscription verification failed: {e}") from e

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request(
            "POST", "/cancel-subscription", "cancel subscription",
            {"subscription_id": subscription_id},
        )

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request(
            "GET", f"/subscription/{subscription_id}", "get subscription details",
        )

    def get_payment_history(self, user_id: str) -> dict[str, Any]:
        return self._request(
            "GET", f"/payments/{user_id}", "get payment history",
        )

    # -- Checkout ----------------------------------------------------------

    def checkout_options(
        self,
        order: dict[str, Any],
        plan: Plan,
        customer_name: str = "",
        customer_email: str = "",
        customer_phone: str = "",
    ) -> dict[str, Any]:
        """Options for the gateway's checkout widget for an order."""
        return {
            "key": self._config.key_id,
            "amount": order.get("amount"),
            "currency": order.get("currency", self._config.currency),
            "name": CHECKOUT_NAME,
            "description": f"{plan.name} Plan Subscription",
            "order_id": order.get("id"),
            "prefill": {
                "name": customer_name,
                "email": customer_email,
                "contact": customer_phone,
            },
        }

    def start_upgrade(
        self, plan: Plan, period: BillingPeriod, now: datetime | None = None,
    ) -> dict[str, Any]:
        """Create the order for upgrading to *plan*.

        Raises:
            BillingError: If the plan is free or the order fails.
        """
        if plan.is_free:
            raise BillingError(f"{plan.name} plan needs no payment")
        amount = plan.price(period)
        logger.info("Creating %s order for %s (%d)", period.value, plan.name, amount)
        return self.create_order(amount, now=now)
