"""
Vendor HTTP transport shared by the provider adapters.

Every adapter talks to its vendor through `call_vendor`, which opens a short-lived
httpx.AsyncClient with the adapter's base URL, auth scheme and timeout, performs exactly one
request, and either returns the decoded body or raises VendorCallError with a classified
ErrorCode. The error taxonomy is deliberately small:

- TIMEOUT: the request exceeded its time budget (httpx timeout or an outer deadline).
- VENDOR_ERROR: connection failures, invalid URLs, non-2xx responses and bodies that
  cannot be decoded.

VendorCallError never leaves an adapter; adapters convert it into a failed CommandResult.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from shared.models import ErrorCode
from shared.utils import truncate_for_logging

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 5.0


class VendorCallError(Exception):
    """
    Classified failure of a single vendor call.

    Attributes:
        code (ErrorCode): TIMEOUT or VENDOR_ERROR.
        status_code (Optional[int]): HTTP status when the vendor answered.
    """

    def __init__(self, code: ErrorCode, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    def to_metadata(self) -> Dict[str, Any]:
        """Vendor detail for staff-facing metadata."""
        meta: Dict[str, Any] = {"vendor_message": self.message}
        if self.status_code is not None:
            meta["vendor_status"] = self.status_code
        return meta


def build_client(
    base_url: str = "",
    headers: Optional[Dict[str, str]] = None,
    auth: Optional[httpx.Auth] = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build an httpx.AsyncClient for one vendor call.

    Args:
        base_url (str): Vendor base URL; may be empty when `url` is absolute.
        headers (Optional[Dict[str, str]]): Extra headers (auth headers included).
        auth (Optional[httpx.Auth]): Basic auth or other httpx auth flow.
        timeout_s (float): Total timeout applied to connect, read, write and pool.
        transport (Optional[httpx.AsyncBaseTransport]): Injected transport, used by tests.

    Returns:
        httpx.AsyncClient: A client to be used as an async context manager.
    """
    merged_headers = {"Content-Type": "application/json"}
    merged_headers.update(headers or {})
    kwargs: Dict[str, Any] = {
        "headers": merged_headers,
        "timeout": httpx.Timeout(timeout_s),
    }
    if base_url:
        kwargs["base_url"] = base_url
    if auth is not None:
        kwargs["auth"] = auth
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.AsyncClient(**kwargs)


def _vendor_message(response: httpx.Response) -> str:
    """Extract a human-readable error from a vendor response body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
    text = response.text.strip()
    if text:
        return f"HTTP {response.status_code}: {truncate_for_logging(text)}"
    return f"HTTP {response.status_code}"


async def call_vendor(
    method: str,
    url: str,
    *,
    base_url: str = "",
    headers: Optional[Dict[str, str]] = None,
    auth: Optional[httpx.Auth] = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    expect_json: bool = True,
    **request_kwargs: Any,
) -> Any:
    """
    Perform one vendor HTTP request and return its decoded body.

    Args:
        method (str): HTTP method.
        url (str): Absolute URL, or a path relative to `base_url`.
        base_url, headers, auth, timeout_s, transport: See `build_client`.
        expect_json (bool): When True an undecodable body is a VENDOR_ERROR; when False the
            raw text is returned instead.
        **request_kwargs: Forwarded to httpx (json, params, content...).

    Returns:
        Any: Decoded JSON, an empty dict for empty bodies, or text when expect_json=False
        and the body is not JSON.

    Raises:
        VendorCallError: TIMEOUT on time budget exhaustion, VENDOR_ERROR otherwise.
    """
    # URLs are assembled from device blobs, so a bad base URL or host surfaces here too.
    try:
        async with build_client(base_url, headers, auth, timeout_s, transport) as client:
            response = await client.request(method, url, **request_kwargs)
    except httpx.TimeoutException as exc:
        raise VendorCallError(
            ErrorCode.TIMEOUT, f"Timed out after {timeout_s:.1f}s"
        ) from exc
    except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
        raise VendorCallError(
            ErrorCode.VENDOR_ERROR, f"Invalid vendor URL: {exc}"
        ) from exc
    except httpx.HTTPError as exc:
        raise VendorCallError(
            ErrorCode.VENDOR_ERROR, f"Network error: {exc}"
        ) from exc

    if not response.is_success:
        message = _vendor_message(response)
        logger.warning(f"Vendor call {method} {url} failed: {message}")
        raise VendorCallError(ErrorCode.VENDOR_ERROR, message, status_code=response.status_code)

    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        if not expect_json:
            return response.text
        raise VendorCallError(
            ErrorCode.VENDOR_ERROR,
            "Malformed vendor response",
            status_code=response.status_code,
        ) from exc
