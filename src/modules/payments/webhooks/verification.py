"""Webhook signature verification strategies.

Every strategy answers ``verify(headers, body, secret) -> bool`` over the
*raw* request body; parsing happens only after verification succeeds.
Comparisons go through ``hmac.compare_digest`` so timing does not leak
how much of a forged signature matched.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit

import structlog
from django.conf import settings

logger = structlog.get_logger(__name__)

HMAC = "hmac"
TIMESTAMPED = "timestamped"
CERTIFICATE = "certificate"


def get_header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header look-up that works for plain dicts too."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value or ""
    return ""


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class SignatureVerifier(ABC):
    """Provider-agnostic verifier interface."""

    @abstractmethod
    def verify(self, headers: Mapping[str, str], body: bytes, secret: str) -> bool:
        """Return ``True`` only if *body* provably came from the provider."""


class HmacSignatureVerifier(SignatureVerifier):
    """Hex HMAC-SHA256 of the raw body, carried in one of *header_names*."""

    def __init__(self, header_names: Iterable[str] = ("X-Signature",)) -> None:
        self.header_names = tuple(header_names)

    def verify(self, headers: Mapping[str, str], body: bytes, secret: str) -> bool:
        if not secret:
            return False
        signature = ""
        for name in self.header_names:
            signature = get_header(headers, name)
            if signature:
                break
        if not signature:
            logger.warning("webhook.signature_missing", headers=self.header_names)
            return False
        expected = _hex_hmac(secret, body)
        return hmac.compare_digest(expected, signature.strip().lower())


class TimestampedSignatureVerifier(SignatureVerifier):
    """``t=<unix>,v1=<hex>`` header; the signed message is ``"{t}.{body}"``.

    Deliveries whose timestamp is further than ``tolerance`` seconds from
    now are rejected even when the signature is valid.
    """

    def __init__(
        self,
        header_name: str = "X-Signature",
        tolerance: int | None = None,
    ) -> None:
        self.header_name = header_name
        self.tolerance = (
            tolerance
            if tolerance is not None
            else settings.WEBHOOK_REPLAY_WINDOW_SECONDS
        )

    @staticmethod
    def _parse(header: str) -> dict[str, str]:
        parts: dict[str, str] = {}
        for element in header.split(","):
            key, _, value = element.strip().partition("=")
            if key and value:
                parts[key] = value
        return parts

    def verify(self, headers: Mapping[str, str], body: bytes, secret: str) -> bool:
        if not secret:
            return False
        parts = self._parse(get_header(headers, self.header_name))
        timestamp, signature = parts.get("t"), parts.get("v1")
        if not timestamp or not signature:
            logger.warning("webhook.signature_malformed")
            return False
        try:
            sent_at = int(timestamp)
        except ValueError:
            logger.warning("webhook.signature_malformed")
            return False
        if abs(int(time.time()) - sent_at) > self.tolerance:
            logger.warning("webhook.timestamp_outside_window", timestamp=sent_at)
            return False
        expected = _hex_hmac(secret, f"{timestamp}.".encode() + body)
        return hmac.compare_digest(expected, signature.strip().lower())


class CertificateUrlVerifier(SignatureVerifier):
    """For providers that sign with a rotating certificate.

    Requires the full transmission header set and a certificate URL served
    over https from an allow-listed origin.  ``secret`` is the provider's
    webhook id and only has to be present.
    """

    REQUIRED_HEADERS = (
        "Paypal-Transmission-Id",
        "Paypal-Transmission-Time",
        "Paypal-Cert-Url",
        "Paypal-Auth-Algo",
        "Paypal-Transmission-Sig",
    )

    def __init__(self, allowed_prefixes: Iterable[str] | None = None) -> None:
        prefixes = (
            allowed_prefixes
            if allowed_prefixes is not None
            else settings.WEBHOOK_CERT_URL_ALLOWLIST
        )
        self.allowed_prefixes = tuple(p for p in prefixes if p)

    def _allowed(self, cert_url: str) -> bool:
        parsed = urlsplit(cert_url)
        if parsed.scheme != "https" or not parsed.netloc:
            return False
        return any(cert_url.startswith(prefix) for prefix in self.allowed_prefixes)

    def verify(self, headers: Mapping[str, str], body: bytes, secret: str) -> bool:
        if not secret:
            return False
        missing = [h for h in self.REQUIRED_HEADERS if not get_header(headers, h)]
        if missing:
            logger.warning("webhook.transmission_headers_missing", missing=missing)
            return False
        cert_url = get_header(headers, "Paypal-Cert-Url")
        if not self._allowed(cert_url):
            logger.warning("webhook.cert_url_rejected", cert_url=cert_url)
            return False
        return True


def build_verifier(scheme: str, **options: Any) -> SignatureVerifier:
    """Map a configured scheme name onto a verifier instance."""
    if scheme == HMAC:
        return HmacSignatureVerifier(**options)
    if scheme == TIMESTAMPED:
        return TimestampedSignatureVerifier(**options)
    if scheme == CERTIFICATE:
        return CertificateUrlVerifier(**options)
    raise ValueError(f"Unknown webhook signature scheme: {scheme!r}")


def extract_event_id(payload: Mapping[str, Any]) -> str | None:
    """Pick the event id: ``id``, then ``event_id``, then ``transactionId``.

    bKash notifications carry none of these, so they fall back to
    ``"{paymentID}:{transactionStatus}"``: one record per outcome per intent.
    """
    for key in ("id", "event_id", "transactionId"):
        value = payload.get(key)
        if value:
            return str(value)
    payment_id = payload.get("paymentID")
    if payment_id:
        return f"{payment_id}:{payload.get('transactionStatus') or ''}"
    return None
