"""
Retrying HTTP Transport

Every outbound call to Confluence, the vector database and the model
providers goes through `send_with_retry`, which applies one retry policy:

- 5xx, 429 and transport errors are retried with exponential backoff
  plus random jitter
- 401/403 fail immediately with an AuthenticationError
- Any other 4xx fails immediately with an UpstreamRequestError
- Exhausted retries surface as a TransientNetworkError
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Optional

import httpx

from .errors import AuthenticationError, TransientNetworkError, UpstreamRequestError

logger = logging.getLogger("kb.http")

RETRY_JITTER_SECONDS = 0.25
MAX_BODY_PREVIEW = 500


def compute_backoff(attempt: int, base_delay: float) -> float:
    """
    Return the wait before retry number `attempt` (1-based), in seconds.
    """
    safe_base = base_delay if base_delay > 0 else 2.0
    return safe_base * (2 ** (attempt - 1)) + random.uniform(0, RETRY_JITTER_SECONDS)


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def _body_preview(response: httpx.Response) -> str:
    try:
        text = response.text
    except Exception as exc:  # undecodable payloads
        return f"Unable to read response body: {exc}"
    return text[:MAX_BODY_PREVIEW]


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
    context: Optional[str] = None,
    auth_hint: str = "",
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request, retrying transient failures.

    Parameters
    ----------
    client : httpx.AsyncClient
        Client used to send the request.

    method, url : str
        Request line.

    service : str
        Human-readable upstream name used in log and error messages.

    max_retries : int
        Number of retries after the first attempt.

    base_delay : float
        Base backoff delay in seconds.

    context : Optional[str]
        Short description of the call (e.g. "GET /rest/api/content").

    auth_hint : str
        Remediation hint appended to authentication failures.

    Returns
    -------
    httpx.Response
        The first successful (2xx) response.

    Raises
    ------
    AuthenticationError
        On 401/403.

    UpstreamRequestError
        On any other non-retryable 4xx.

    TransientNetworkError
        When retries are exhausted.
    """
    retries = max_retries if max_retries >= 0 else 3
    label = f"{service} request{f' ({context})' if context else ''}"
    last_error = "no attempt made"
    last_status: Optional[int] = None

    for attempt in range(retries + 1):
        if attempt > 0:
            wait = compute_backoff(attempt, base_delay)
            logger.warning(
                "%s retry %d/%d in %.2fs after %s",
                label,
                attempt,
                retries,
                wait,
                last_error,
            )
            await asyncio.sleep(wait)

        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            last_status = None
            continue

        if response.is_success:
            return response

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"{service} authentication failed with status {status}. "
                f"{auth_hint} Response body: {_body_preview(response)}".replace("  ", " "),
                status_code=status,
            )

        if not is_retryable_status(status):
            raise UpstreamRequestError(
                f"{label} failed ({status}). Response body: {_body_preview(response)}",
                status_code=status,
            )

        last_error = f"status {status}"
        last_status = status

    raise TransientNetworkError(
        f"{label} failed after {retries + 1} attempts ({last_error})",
        status_code=last_status,
    )
