"""
Error taxonomy for the JustCall transcript pipeline.

Every failure the pipeline can surface is one of a handful of categories, each
carrying a message that can be shown to the user as-is.
"""
import asyncio
from typing import Optional

import aiohttp

MAX_UPSTREAM_MESSAGE = 500


class JustCallError(Exception):
    """Base class for all classified pipeline errors."""

    category = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthRejected(JustCallError):
    """Upstream refused the key/secret pair (HTTP 401/403)."""

    category = "auth_rejected"

    def __init__(self, status: int = 401, message: Optional[str] = None):
        super().__init__(message or (
            f"AUTH ERROR ({status}): your API Key or Secret is incorrect. "
            "No other connection method will fix this."
        ))
        self.status = status


class RateLimited(JustCallError):
    """Upstream throttled us (HTTP 429)."""

    category = "rate_limited"

    def __init__(self, retry_after: Optional[int] = None):
        hint = f" Upstream asked to wait {retry_after} seconds." if retry_after else ""
        super().__init__(
            "RATE LIMIT (429): too many requests. Try a narrower date range "
            "or a longer delay between pages." + hint
        )
        self.retry_after = retry_after


class TransportUnavailable(JustCallError):
    """
    The network path itself is broken: relay missing (404), no HTTP response,
    timeout, or a relay answered with something that is not JSON.

    ``transient`` marks failures worth retrying on the same path (timeouts,
    dropped connections).
    """

    category = "transport_unavailable"

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class UpstreamError(JustCallError):
    """Any other HTTP failure, carrying the upstream status and text verbatim."""

    category = "upstream_error"

    def __init__(self, status: int, message: str):
        shown = message or ""
        if len(shown) > MAX_UPSTREAM_MESSAGE:
            shown = shown[:MAX_UPSTREAM_MESSAGE] + "..."
        super().__init__(f"API error {status}: {shown.strip() or 'no message'}")
        self.status = status
        self.upstream_message = message or ""


class NoDataInRange(JustCallError):
    """Not a failure: the range was valid but held no calls."""

    category = "no_data_in_range"

    def __init__(self, start: str = "", end: str = ""):
        span = f" between {start} and {end}" if start and end else ""
        super().__init__(f"No calls found{span}. Try a wider date range.")


class InvalidCredentials(JustCallError, ValueError):
    """Key or secret is empty after trimming."""

    category = "invalid_credentials"


def _parse_retry_after(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def classify_http_error(status: int, body: str = "", via_relay: bool = False,
                        retry_after=None) -> JustCallError:
    """Map an HTTP error status to its error category."""
    if status in (401, 403):
        return AuthRejected(status)
    if status == 429:
        return RateLimited(_parse_retry_after(retry_after))
    if status == 404:
        where = "relay" if via_relay else "endpoint"
        return TransportUnavailable(
            f"PROXY ERROR (404): the {where} was not found. "
            "This is a connection problem, not a credentials problem."
        )
    return UpstreamError(status, body)


def classify_exception(exc: BaseException) -> JustCallError:
    """Map a transport-level exception (no HTTP status) to its category."""
    if isinstance(exc, JustCallError):
        return exc
    if isinstance(exc, aiohttp.ClientResponseError):
        return classify_http_error(exc.status, exc.message)
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerDisconnectedError)):
        return TransportUnavailable(f"NETWORK TIMEOUT: {str(exc) or type(exc).__name__}", transient=True)
    if isinstance(exc, aiohttp.ClientError):
        return TransportUnavailable(f"NETWORK ERROR: {exc}")
    return TransportUnavailable(f"NETWORK ERROR: {type(exc).__name__}: {exc}")
