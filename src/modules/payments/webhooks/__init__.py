"""Inbound payment webhooks: signature verification and de-duplication."""
