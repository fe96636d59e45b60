"""Unit tests for webhook signature verification strategies."""

from __future__ import annotations

import hashlib
import hmac

import pytest
from freezegun import freeze_time

from modules.payments.webhooks.verification import (
    CertificateUrlVerifier,
    HmacSignatureVerifier,
    TimestampedSignatureVerifier,
    build_verifier,
    extract_event_id,
    get_header,
)

pytestmark = pytest.mark.unit

SECRET = "whsec-test"
BODY = b'{"paymentID":"TR0011","transactionStatus":"Completed"}'


def _sign(message: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class TestHmacSignatureVerifier:
    def test_valid_signature(self):
        verifier = HmacSignatureVerifier(header_names=("X-Bkash-Signature",))
        assert verifier.verify({"X-Bkash-Signature": _sign(BODY)}, BODY, SECRET)

    def test_header_lookup_is_case_insensitive(self):
        verifier = HmacSignatureVerifier(header_names=("X-Bkash-Signature",))
        assert verifier.verify({"x-bkash-signature": _sign(BODY).upper()}, BODY, SECRET)

    def test_falls_back_to_second_header(self):
        verifier = HmacSignatureVerifier(header_names=("X-Webhook-Signature", "X-Signature"))
        assert verifier.verify({"X-Signature": _sign(BODY)}, BODY, SECRET)

    def test_tampered_body_rejected(self):
        verifier = HmacSignatureVerifier()
        tampered = BODY.replace(b"Completed", b"Failed")
        assert not verifier.verify({"X-Signature": _sign(BODY)}, tampered, SECRET)

    def test_wrong_secret_rejected(self):
        verifier = HmacSignatureVerifier()
        assert not verifier.verify({"X-Signature": _sign(BODY, "other")}, BODY, SECRET)

    def test_missing_header_rejected(self):
        assert not HmacSignatureVerifier().verify({}, BODY, SECRET)

    def test_empty_secret_rejected(self):
        assert not HmacSignatureVerifier().verify({"X-Signature": _sign(BODY, "")}, BODY, "")


class TestTimestampedSignatureVerifier:
    def _header(self, timestamp: int, body: bytes = BODY) -> dict:
        signature = _sign(f"{timestamp}.".encode() + body)
        return {"X-Signature": f"t={timestamp},v1={signature}"}

    @freeze_time("2026-03-01 12:00:00")
    def test_valid_signature_inside_window(self):
        verifier = TimestampedSignatureVerifier(tolerance=300)
        now = 1772366400  # 2026-03-01 12:00:00 UTC
        assert verifier.verify(self._header(now - 60), BODY, SECRET)

    def test_expired_timestamp_rejected_even_with_valid_signature(self):
        verifier = TimestampedSignatureVerifier(tolerance=300)
        with freeze_time("2026-03-01 12:00:00"):
            header = self._header(1772366400)
            assert verifier.verify(header, BODY, SECRET)
        with freeze_time("2026-03-01 12:10:00"):
            assert not verifier.verify(header, BODY, SECRET)

    @freeze_time("2026-03-01 12:00:00")
    def test_future_timestamp_rejected(self):
        verifier = TimestampedSignatureVerifier(tolerance=300)
        assert not verifier.verify(self._header(1772366400 + 3600), BODY, SECRET)

    @freeze_time("2026-03-01 12:00:00")
    def test_tampered_body_rejected(self):
        verifier = TimestampedSignatureVerifier(tolerance=300)
        header = self._header(1772366400)
        assert not verifier.verify(header, BODY + b" ", SECRET)

    @pytest.mark.parametrize(
        "value", ["", "v1=abc", "t=123", "t=abc,v1=def", "garbage"]
    )
    def test_malformed_header_rejected(self, value):
        verifier = TimestampedSignatureVerifier(tolerance=300)
        assert not verifier.verify({"X-Signature": value}, BODY, SECRET)

    def test_tolerance_defaults_to_setting(self, settings):
        settings.WEBHOOK_REPLAY_WINDOW_SECONDS = 42
        assert TimestampedSignatureVerifier().tolerance == 42


class TestCertificateUrlVerifier:
    HEADERS = {
        "Paypal-Transmission-Id": "tx-1",
        "Paypal-Transmission-Time": "2026-03-01T12:00:00Z",
        "Paypal-Cert-Url": "https://api.paypal.com/v1/notifications/certs/CERT-1",
        "Paypal-Auth-Algo": "SHA256withRSA",
        "Paypal-Transmission-Sig": "c2lnbmF0dXJl",
    }

    def _verifier(self):
        return CertificateUrlVerifier(allowed_prefixes=("https://api.paypal.com/",))

    def test_complete_headers_from_allowed_origin_accepted(self):
        assert self._verifier().verify(self.HEADERS, BODY, "webhook-id")

    def test_missing_header_rejected(self):
        headers = {k: v for k, v in self.HEADERS.items() if k != "Paypal-Auth-Algo"}
        assert not self._verifier().verify(headers, BODY, "webhook-id")

    @pytest.mark.parametrize(
        "cert_url",
        [
            "http://api.paypal.com/v1/notifications/certs/CERT-1",
            "https://evil.example.com/cert.pem",
            "https://api.paypal.com.evil.example/cert.pem",
        ],
    )
    def test_untrusted_cert_url_rejected(self, cert_url):
        headers = {**self.HEADERS, "Paypal-Cert-Url": cert_url}
        assert not self._verifier().verify(headers, BODY, "webhook-id")

    def test_missing_webhook_id_rejected(self):
        assert not self._verifier().verify(self.HEADERS, BODY, "")


class TestBuildVerifier:
    def test_known_schemes(self):
        assert isinstance(build_verifier("hmac"), HmacSignatureVerifier)
        assert isinstance(build_verifier("timestamped", tolerance=10), TimestampedSignatureVerifier)
        assert isinstance(build_verifier("certificate"), CertificateUrlVerifier)

    def test_unknown_scheme(self):
        with pytest.raises(ValueError, match="Unknown webhook signature scheme"):
            build_verifier("rsa")


class TestExtractEventId:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"id": "evt-1", "event_id": "x", "transactionId": "y"}, "evt-1"),
            ({"event_id": "evt-2", "transactionId": "y"}, "evt-2"),
            ({"transactionId": "TXN-3"}, "TXN-3"),
            ({"paymentID": "TR001", "transactionStatus": "Completed"}, "TR001:Completed"),
            ({"paymentID": "TR001"}, "TR001:"),
            ({"status": "completed"}, None),
        ],
    )
    def test_precedence(self, payload, expected):
        assert extract_event_id(payload) == expected


def test_get_header_returns_empty_string_when_missing():
    assert get_header({"Content-Type": "application/json"}, "X-Signature") == ""
