"""
HTTP retrieval with bounded retries.

Both the index and the range fetchers go through ``get_with_retry`` so that
timeouts, retry counts and backoff are configured in one place. The ``http``
argument is anything exposing ``get(url, **kwargs)`` with the requests
signature: the ``requests`` module itself by default, a ``requests.Session``
or a test double.
"""

import logging
import time
from typing import Dict, Optional

import requests

from ..exceptions import TransportError

logger = logging.getLogger(__name__)

# Statuses where another attempt may succeed
RETRYABLE_STATUSES = {408, 425, 429, 500, 502, 503, 504}

# Raised while a streamed body is being read
STREAM_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


def sleep_before_retry(backoff: float, attempt: int) -> None:
    """Wait ``backoff * 2**attempt`` seconds after a failed attempt."""
    delay = backoff * (2 ** attempt)
    if delay > 0:
        time.sleep(delay)


def get_with_retry(
    http,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    stream: bool = False,
    timeout: float = 60.0,
    max_retries: int = 3,
    backoff: float = 2.0,
):
    """
    GET ``url`` with exponential backoff retry logic.

    Redirects are followed. The caller owns the returned response and must
    close it when ``stream`` is True.

    Args:
        http: Object with a requests-compatible ``get`` method
        url: Resource URL
        headers: Optional request headers (e.g., Range)
        stream: Stream the body instead of loading it eagerly
        timeout: Per-attempt timeout in seconds
        max_retries: Maximum number of attempts
        backoff: Delay before the second attempt; doubled afterwards

    Returns:
        Response with a 2xx status

    Raises:
        TransportError: If every attempt fails or the status is not retryable
    """
    last_error = "no attempt made"
    for attempt in range(max_retries):
        try:
            response = http.get(
                url,
                headers=headers or {},
                stream=stream,
                timeout=timeout,
                allow_redirects=True,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            last_error = f"{type(e).__name__}: {e}"
            logger.debug(f"Network error on attempt {attempt + 1}/{max_retries} for {url}: {e}")
        except requests.RequestException as e:
            raise TransportError(f"Request for {url} failed: {e}") from e
        else:
            status = response.status_code
            if 200 <= status < 300:
                return response
            response.close()
            last_error = f"HTTP {status}"
            if status not in RETRYABLE_STATUSES:
                raise TransportError(f"Request for {url} failed: HTTP {status}")
            logger.debug(f"HTTP {status} on attempt {attempt + 1}/{max_retries} for {url}")

        if attempt < max_retries - 1:
            sleep_before_retry(backoff, attempt)

    raise TransportError(f"Request for {url} failed after {max_retries} attempts: {last_error}")
