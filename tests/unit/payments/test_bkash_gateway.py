"""Unit tests for the live bKash client with a stubbed ``requests.Session``."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from modules.payments.gateway.bkash import (
    CREATE_PATH,
    EXECUTE_PATH,
    GRANT_PATH,
    QUERY_PATH,
    REFRESH_PATH,
    REFUND_PATH,
    BkashGateway,
)
from modules.payments.gateway.port import (
    GatewayRejected,
    GatewayUnavailable,
    PaymentCreated,
    PaymentExecuted,
    PaymentQueried,
    PaymentRefunded,
)

pytestmark = pytest.mark.unit

BASE_URL = "https://bkash.test/v1.2.0-beta"

TOKEN = {
    "statusCode": "0000",
    "statusMessage": "Successful",
    "id_token": "id-token-1",
    "refresh_token": "refresh-token-1",
    "expires_in": 3600,
}


def _response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


@pytest.fixture()
def session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture()
def gateway(session):
    return BkashGateway(
        base_url=BASE_URL,
        app_key="app-key",
        app_secret="app-secret",
        username="merchant",
        password="merchant-pass",
        callback_url="https://shop.test/api/v1/payments/bkash/callback/",
        timeout=5,
        enabled=True,
        session=session,
    )


def _posted_paths(session):
    return [call.args[0].removeprefix(BASE_URL) for call in session.post.call_args_list]


class TestConfiguration:
    def test_configured_with_credentials(self, gateway):
        assert gateway.is_configured() is True

    def test_disabled_gateway_is_not_configured(self, session):
        gateway = BkashGateway(
            base_url=BASE_URL,
            app_key="k",
            app_secret="s",
            username="u",
            password="p",
            enabled=False,
            session=session,
        )
        assert gateway.is_configured() is False

    def test_missing_credentials(self, session):
        gateway = BkashGateway(
            base_url=BASE_URL,
            app_key="",
            app_secret="s",
            username="u",
            password="p",
            enabled=True,
            session=session,
        )
        assert gateway.is_configured() is False


class TestTokenHandling:
    def test_grants_token_once_and_reuses_it(self, gateway, session):
        created = {
            "statusCode": "0000",
            "paymentID": "TR0011",
            "bkashURL": "https://sandbox.bka.sh/checkout?paymentId=TR0011",
            "amount": "5620.00",
        }
        session.post.side_effect = [
            _response(TOKEN),
            _response(created),
            _response(created),
        ]

        gateway.create_payment(Decimal("5620.00"), "order-1")
        gateway.create_payment(Decimal("5620.00"), "order-1")

        assert _posted_paths(session) == [GRANT_PATH, CREATE_PATH, CREATE_PATH]
        grant_call = session.post.call_args_list[0]
        assert grant_call.kwargs["headers"] == {
            "username": "merchant",
            "password": "merchant-pass",
        }
        create_call = session.post.call_args_list[1]
        assert create_call.kwargs["headers"]["Authorization"] == "id-token-1"
        assert create_call.kwargs["headers"]["X-APP-Key"] == "app-key"
        assert create_call.kwargs["timeout"] == 5

    def test_expired_token_is_refreshed(self, gateway, session):
        session.post.side_effect = [
            _response(TOKEN),
            _response({"statusCode": "0000", "transactionStatus": "Initiated"}),
            _response({**TOKEN, "id_token": "id-token-2"}),
            _response({"statusCode": "0000", "transactionStatus": "Initiated"}),
        ]

        gateway.query_payment("TR0011")
        gateway._token_expires_at = 0
        gateway.query_payment("TR0011")

        assert _posted_paths(session) == [GRANT_PATH, QUERY_PATH, REFRESH_PATH, QUERY_PATH]
        refresh_body = session.post.call_args_list[2].kwargs["json"]
        assert refresh_body["refresh_token"] == "refresh-token-1"
        assert session.post.call_args_list[3].kwargs["headers"]["Authorization"] == "id-token-2"

    def test_failed_refresh_falls_back_to_grant(self, gateway, session):
        session.post.side_effect = [
            _response(TOKEN),
            _response({"statusCode": "0000", "transactionStatus": "Initiated"}),
            _response({"statusCode": "2079", "statusMessage": "Invalid refresh token"}),
            _response({**TOKEN, "id_token": "id-token-3"}),
            _response({"statusCode": "0000", "transactionStatus": "Initiated"}),
        ]

        gateway.query_payment("TR0011")
        gateway._token_expires_at = 0
        gateway.query_payment("TR0011")

        assert _posted_paths(session) == [
            GRANT_PATH,
            QUERY_PATH,
            REFRESH_PATH,
            GRANT_PATH,
            QUERY_PATH,
        ]

    def test_grant_rejection_is_returned_as_result(self, gateway, session):
        session.post.side_effect = [
            _response({"statusCode": "2001", "statusMessage": "Invalid App Key"}),
        ]

        result = gateway.create_payment(Decimal("100.00"), "order-1")

        assert isinstance(result, GatewayRejected)
        assert result.code == "2001"

    def test_grant_timeout_is_unavailable(self, gateway, session):
        session.post.side_effect = requests.Timeout()

        result = gateway.execute_payment("TR0011")

        assert isinstance(result, GatewayUnavailable)


class TestCreatePayment:
    def test_success(self, gateway, session):
        session.post.side_effect = [
            _response(TOKEN),
            _response(
                {
                    "statusCode": "0000",
                    "statusMessage": "Successful",
                    "paymentID": "TR0011",
                    "bkashURL": "https://sandbox.bka.sh/checkout?paymentId=TR0011",
                    "amount": "5620.00",
                    "paymentCreateTime": "2026-03-01T12:00:00:000 GMT+0600",
                }
            ),
        ]

        result = gateway.create_payment(Decimal("5620"), "order-1", payer_reference="42")

        assert isinstance(result, PaymentCreated)
        assert result.payment_id == "TR0011"
        assert result.redirect_url.endswith("paymentId=TR0011")
        assert result.amount == Decimal("5620.00")
        body = session.post.call_args_list[1].kwargs["json"]
        assert body == {
            "mode": "0011",
            "payerReference": "42",
            "callbackURL": "https://shop.test/api/v1/payments/bkash/callback/",
            "amount": "5620.00",
            "currency": "BDT",
            "intent": "sale",
            "merchantInvoiceNumber": "order-1",
        }

    def test_missing_redirect_url_is_rejected(self, gateway, session):
        session.post.side_effect = [
            _response(TOKEN),
            _response({"statusCode": "0000", "paymentID": "TR0011"}),
        ]

        result = gateway.create_payment(Decimal("10"), "order-1")

        assert isinstance(result, GatewayRejected)

    def test_non_success_status_code_is_rejected(self, gateway, session):
        session.post.side_effect = [
            _response(TOKEN),
            _response({"statusCode": "2023", "statusMessage": "Insufficient Balance"}),
        ]

        result = gateway.create_payment(Decimal("10"), "order-1")

        assert isinstance(result, GatewayRejected)
        assert result.code == "2023"
        assert result.reason == "Insufficient Balance"
        assert result.raw["statusCode"] == "2023"

    def test_error_code_body_is_rejected(self, gateway, session):
        session.post.side_effect = [
            _response(TOKEN),
            _response({"errorCode": "9999", "errorMessage": "System error"}),
        ]

        result = gateway.create_payment(Decimal("10"), "order-1")

        assert isinstance(result, GatewayRejected)
        assert result.code == "9999"


class TestTransportErrors:
    @pytest.fixture(autouse=True)
    def _token(self, gateway, session):
        session.post.side_effect = [_response(TOKEN)]
        gateway._get_token()
        session.post.reset_mock()

    def test_timeout_is_unavailable(self, gateway, session):
        session.post.side_effect = requests.Timeout()
        assert isinstance(gateway.query_payment("TR0011"), GatewayUnavailable)

    def test_connection_error_is_unavailable(self, gateway, session):
        session.post.side_effect = requests.ConnectionError("refused")
        assert isinstance(gateway.query_payment("TR0011"), GatewayUnavailable)

    def test_server_error_is_unavailable(self, gateway, session):
        session.post.side_effect = [_response({"message": "oops"}, status_code=503)]
        result = gateway.query_payment("TR0011")
        assert isinstance(result, GatewayUnavailable)
        assert result.raw == {"message": "oops"}

    def test_client_error_is_rejected(self, gateway, session):
        session.post.side_effect = [
            _response({"statusCode": "2056", "statusMessage": "Invalid Payment State"}, 400)
        ]
        result = gateway.execute_payment("TR0011")
        assert isinstance(result, GatewayRejected)
        assert result.reason == "Invalid Payment State"

    def test_non_json_body_is_kept_raw(self, gateway, session):
        response = _response(None, status_code=502)
        response.json.side_effect = ValueError("no json")
        response.text = "<html>Bad gateway</html>"
        session.post.side_effect = [response]

        result = gateway.query_payment("TR0011")

        assert isinstance(result, GatewayUnavailable)
        assert result.raw == {"body": "<html>Bad gateway</html>"}


class TestExecuteQueryRefund:
    @pytest.fixture(autouse=True)
    def _token(self, gateway, session):
        session.post.side_effect = [_response(TOKEN)]
        gateway._get_token()
        session.post.reset_mock()

    def test_execute_completed(self, gateway, session):
        session.post.side_effect = [
            _response(
                {
                    "statusCode": "0000",
                    "paymentID": "TR0011",
                    "trxID": "BFD90JRLST",
                    "transactionStatus": "Completed",
                    "amount": "5620.00",
                    "customerMsisdn": "01770618575",
                    "paymentExecuteTime": "2026-03-01T12:01:00:000 GMT+0600",
                }
            )
        ]

        result = gateway.execute_payment("TR0011")

        assert isinstance(result, PaymentExecuted)
        assert result.is_completed
        assert result.trx_id == "BFD90JRLST"
        assert result.amount == Decimal("5620.00")
        assert result.customer_msisdn == "01770618575"
        assert _posted_paths(session) == [EXECUTE_PATH]

    def test_execute_not_completed(self, gateway, session):
        session.post.side_effect = [
            _response(
                {"statusCode": "0000", "paymentID": "TR0011", "transactionStatus": "Failed"}
            )
        ]

        result = gateway.execute_payment("TR0011")

        assert isinstance(result, PaymentExecuted)
        assert not result.is_completed

    def test_query(self, gateway, session):
        session.post.side_effect = [
            _response(
                {
                    "statusCode": "0000",
                    "paymentID": "TR0011",
                    "trxID": "BFD90JRLST",
                    "transactionStatus": "Completed",
                    "amount": "5620.00",
                }
            )
        ]

        result = gateway.query_payment("TR0011")

        assert isinstance(result, PaymentQueried)
        assert result.is_completed
        assert session.post.call_args.kwargs["json"] == {"paymentID": "TR0011"}

    def test_refund(self, gateway, session):
        session.post.side_effect = [
            _response(
                {
                    "statusCode": "0000",
                    "originalTrxID": "BFD90JRLST",
                    "refundTrxID": "RFD12345",
                    "transactionStatus": "Completed",
                    "amount": "5620.00",
                }
            )
        ]

        result = gateway.refund_payment("TR0011", "BFD90JRLST", Decimal("5620"), "Damaged")

        assert isinstance(result, PaymentRefunded)
        assert result.refund_trx_id == "RFD12345"
        assert result.amount == Decimal("5620.00")
        assert _posted_paths(session) == [REFUND_PATH]
        body = session.post.call_args.kwargs["json"]
        assert body["amount"] == "5620.00"
        assert body["reason"] == "Damaged"
