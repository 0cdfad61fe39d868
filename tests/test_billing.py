"""Tests for marketintel.services.billing."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from marketintel.config import BillingConfig
from marketintel.errors import BillingError
from marketintel.services.billing import (
    PLANS,
    BillingClient,
    BillingPeriod,
    get_plan,
)
from marketintel.services.rbac import Role

NOW = datetime(2024, 6, 15, tzinfo=UTC)


def _make_response(status: int = 200, body: object = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.json.return_value = body if body is not None else {}
    return response


def _make_client() -> BillingClient:
    return BillingClient(BillingConfig(
        api_base_url="https://billing.example.com/api/",
        key_id="rzp_test_key",
        api_token="secret",
    ))


class TestPlans:
    def test_prices(self) -> None:
        premium = PLANS[Role.PREMIUM]
        assert premium.price(BillingPeriod.MONTHLY) == 999
        assert premium.price(BillingPeriod.YEARLY) == 9999
        assert premium.yearly_savings == 999 * 12 - 9999

    def test_free_plan(self) -> None:
        free = PLANS[Role.FREEMIUM]
        assert free.is_free
        assert free.yearly_savings == 0
        with pytest.raises(ValueError):
            free.price(BillingPeriod.YEARLY)

    def test_admin_sees_enterprise(self) -> None:
        assert get_plan(Role.ADMIN) is PLANS[Role.ENTERPRISE]


class TestRequests:
    def test_create_order_sends_paise(self) -> None:
        client = _make_client()
        with patch(
            "marketintel.services.billing.requests.post",
            return_value=_make_response(body={"id": "order_1", "amount": 99900}),
        ) as post:
            order = client.create_order(999, now=NOW)

        assert order["id"] == "order_1"
        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        headers = post.call_args.kwargs["headers"]
        assert url == "https://billing.example.com/api/create-order"
        assert payload["amount"] == 99900
        assert payload["currency"] == "INR"
        assert payload["receipt"] == f"receipt_{int(NOW.timestamp() * 1000)}"
        assert headers["Authorization"] == "Bearer secret"

    def test_retries_on_server_error(self) -> None:
        client = _make_client()
        responses = [_make_response(503), _make_response(body={"status": "ok"})]
        with (
            patch("marketintel.services.billing.requests.get", side_effect=responses) as get,
            patch("marketintel.services.billing.time.sleep") as sleep,
        ):
            result = client.get_subscription("sub_1")

        assert result == {"status": "ok"}
        assert get.call_count == 2
        sleep.assert_called_once_with(1.0)

    def test_gives_up_after_max_retries(self) -> None:
        client = _make_client()
        with (
            patch(
                "marketintel.services.billing.requests.get",
                side_effect=requests.ConnectionError("refused"),
            ) as get,
            patch("marketintel.services.billing.time.sleep") as sleep,
        ):
            with pytest.raises(BillingError, match="get payment history"):
                client.get_payment_history("u1")

        assert get.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_client_error_not_retried(self) -> None:
        client = _make_client()
        with patch(
            "marketintel.services.billing.requests.post",
            return_value=_make_response(400),
        ) as post:
            with pytest.raises(BillingError, match="status 400"):
                client.cancel_subscription("sub_1")
        assert post.call_count == 1

    def test_verify_failure_message(self) -> None:
        client = _make_client()
        with patch(
            "marketintel.services.billing.requests.post",
            return_value=_make_response(401),
        ):
            with pytest.raises(BillingError, match="Payment verification failed"):
                client.verify_payment("pay_1", "order_1", "bad-signature")

    def test_list_body_is_wrapped(self) -> None:
        client = _make_client()
        with patch(
            "marketintel.services.billing.requests.get",
            return_value=_make_response(body=[{"id": "pay_1"}]),
        ):
            assert client.get_payment_history("u1") == {"data": [{"id": "pay_1"}]}


class TestCheckout:
    def test_start_upgrade_uses_period_price(self) -> None:
        client = _make_client()
        with patch.object(client, "create_order", return_value={"id": "o"}) as create:
            client.start_upgrade(PLANS[Role.ENTERPRISE], BillingPeriod.YEARLY, now=NOW)
        create.assert_called_once_with(29999, now=NOW)

    def test_free_plan_needs_no_payment(self) -> None:
        with pytest.raises(BillingError):
            _make_client().start_upgrade(PLANS[Role.FREEMIUM], BillingPeriod.MONTHLY)

    def test_checkout_options(self) -> None:
        options = _make_client().checkout_options(
            {"id": "order_1", "amount": 99900, "currency": "INR"},
            PLANS[Role.PREMIUM],
            customer_email="a@b.co",
        )
        assert options["key"] == "rzp_test_key"
        assert options["order_id"] == "order_1"
        assert options["description"] == "Premium Plan Subscription"
        assert options["prefill"]["email"] == "a@b.co"
