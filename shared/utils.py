"""
shared/utils.py

Shared utility functions used across multiple modules.

This module contains small helpers that several layers need: UTC clock access, token
hashing, tolerant parsing of a device's vendor configuration blob, and log truncation.
Keeping them here avoids import cycles between shared.models and the service layers.
"""

import datetime
import hashlib
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def utc_now() -> datetime.datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive datetimes are assumed to already be in UTC, which is how the access store writes
    them. Aware datetimes are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def hash_token(token: str) -> str:
    """
    Hash a guest access token for storage and lookup.

    Args:
        token (str): Raw token as presented by the guest.

    Returns:
        str: Hex-encoded SHA-256 digest of the stripped token.
    """
    return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()


def parse_device_config(raw: Any, fallback: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Safely turn a device's vendor configuration blob into a dictionary.

    Args:
        raw (Any): The blob as stored; a dict, a JSON string, or None.
        fallback (Optional[Dict[str, Any]]): Value to return when parsing fails.

    Returns:
        Dict[str, Any]: Parsed configuration, or the fallback (empty dict by default).

    Device blobs are written by the provisioning tooling, outside this service, so a
    malformed blob is logged and treated as empty instead of failing the dispatch.
    """
    if isinstance(raw, dict):
        return raw
    if raw is None or raw == "":
        return fallback or {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse device config: {e}. Using fallback value.")
        return fallback or {}
    if not isinstance(parsed, dict):
        logger.warning("Device config is not a JSON object. Using fallback value.")
        return fallback or {}
    return parsed


def truncate_for_logging(message: str, max_length: int = 200) -> str:
    """
    Truncate long vendor payloads for logging purposes.

    Args:
        message (str): Text to truncate
        max_length (int): Maximum length before truncation (default: 200)

    Returns:
        str: Truncated text with ellipsis if needed
    """
    if len(message) <= max_length:
        return message
    return message[:max_length] + "..."
