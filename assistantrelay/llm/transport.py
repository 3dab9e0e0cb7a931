"""
Deadline-bounded HTTP calls.
"""

import asyncio

import httpx

from assistantrelay.utils.logging import get_logger

from .exceptions import UpstreamTimeoutError

logger = get_logger(__name__)


async def invoke_with_timeout(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    timeout: float,
    label: str,
    **kwargs,
) -> httpx.Response:
    """
    Perform exactly one request, abandoning it once ``timeout`` elapses.

    The request runs inside ``asyncio.wait_for``, which cancels it on expiry so
    nothing keeps running in the background. Expiry, and a transport level
    timeout raised by httpx itself, both surface as ``UpstreamTimeoutError``
    tagged with ``label``. Every other transport error propagates unchanged.

    Args:
        client: Shared async client
        method: HTTP method
        url: Absolute URL
        timeout: Deadline in seconds
        label: Operation name for the timeout error ("create_prediction", ...)
        **kwargs: Passed through to ``client.request``

    Returns:
        The response, whatever its status code
    """
    try:
        return await asyncio.wait_for(
            client.request(method, url, **kwargs), timeout=timeout
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        logger.warning(f"{label} timed out after {timeout:.1f}s")
        raise UpstreamTimeoutError(label, timeout=timeout) from e
