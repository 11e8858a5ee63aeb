"""Outbound notifications."""

from .email import EmailDelivery, EmailResult

__all__ = ["EmailDelivery", "EmailResult"]
