"""Shared HTTP plumbing for the Stellar SEP clients.

Every SEP endpoint reports failures as ``{"error": "..."}`` with a non-2xx
status. Those become :class:`SepApiError`, which is an :class:`AnchorError`
so the API layer handles both the same way.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from rampkit.anchors.base import DEFAULT_TIMEOUT, AnchorError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SepApiError(AnchorError):
    """Error response from a SEP endpoint.

    ``response`` holds the parsed error body, or an empty dict when the
    body was not JSON.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        response: Optional[dict] = None,
        code: str = "SEP_ERROR",
    ):
        super().__init__(message, code, status_code)
        self.response = response or {}


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _drop_empty(values: Optional[dict]) -> Optional[dict]:
    if not values:
        return None
    cleaned = {}
    for key, value in values.items():
        if value is None or value == "":
            continue
        cleaned[key] = "true" if value is True else "false" if value is False else value
    return cleaned or None


def _error_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class SepHttp:
    """Sends SEP requests over a shared or per-call httpx client."""

    def __init__(
        self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT
    ):
        self._http_client = http_client
        self.timeout = timeout

    async def _send(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.request(
                    method, url, timeout=self.timeout, **kwargs
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"[SEP] {method} {url} failed: {e}")
            raise SepApiError(f"Failed to {action}: {e}", 502, code="NETWORK_ERROR") from e

    async def request(
        self,
        method: str,
        url: str,
        action: str,
        token: Optional[str] = None,
        params: Optional[dict] = None,
        json_body: Any = None,
        form: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> Any:
        """Send a request and return the parsed JSON body.

        ``action`` names the operation in error messages, e.g.
        ``"get challenge"``.

        Raises:
            SepApiError: On a transport failure or non-2xx response
        """
        kwargs: dict[str, Any] = {"headers": auth_headers(token) if token else {}}
        if params:
            kwargs["params"] = _drop_empty(params)
        if json_body is not None:
            kwargs["json"] = json_body
        if form is not None:
            kwargs["data"] = _drop_empty(form) or {}
        if files:
            kwargs["files"] = files

        logger.debug(f"[SEP] {method} {url}")
        response = await self._send(method, url, action, **kwargs)

        if response.is_error:
            body = _error_body(response)
            message = body.get("error")
            if not isinstance(message, str) or not message:
                message = f"Failed to {action}: {response.status_code}"
            logger.warning(f"[SEP] {method} {url} -> {response.status_code}: {message}")
            raise SepApiError(message, response.status_code, body)

        if not response.content:
            return None
        return response.json()

    async def get_text(self, url: str, action: str, max_bytes: int) -> str:
        """GET a text document, refusing bodies over ``max_bytes``."""
        response = await self._send("GET", url, action)
        if response.is_error:
            raise SepApiError(
                f"Failed to {action}: {response.status_code}",
                response.status_code,
                _error_body(response),
            )
        if len(response.content) > max_bytes:
            raise SepApiError(
                f"Failed to {action}: document exceeds {max_bytes} bytes",
                502,
                code="DOCUMENT_TOO_LARGE",
            )
        return response.text


async def poll_transaction(
    fetch: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    interval: float = 5.0,
    timeout: float = 600.0,
    on_status_change: Optional[Callable[[T], None]] = None,
) -> T:
    """Fetch a SEP transaction until ``is_done`` or ``timeout`` seconds pass.

    ``on_status_change`` runs whenever the ``status`` field differs from
    the previous fetch.

    Raises:
        SepApiError: POLL_TIMEOUT when the deadline passes
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_status = None

    while loop.time() < deadline:
        transaction = await fetch()
        status = getattr(transaction, "status", None)
        if status != last_status:
            last_status = status
            logger.debug(f"[SEP] Transaction status -> {status}")
            if on_status_change is not None:
                on_status_change(transaction)
        if is_done(transaction):
            return transaction
        await asyncio.sleep(interval)

    raise SepApiError(
        f"Transaction polling timed out after {timeout}s", 504, code="POLL_TIMEOUT"
    )
