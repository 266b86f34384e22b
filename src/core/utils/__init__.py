"""Utility package for phone numbers, outbound HTTP and QR codes."""

from src.core.utils import phone, qr, utils

__all__ = ["phone", "qr", "utils"]
