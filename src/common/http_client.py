"""Shared HTTP helpers used by the archive client.

Encapsulates request/timeout/retry handling so callers only deal with bytes
or a ``FetchError``. Server errors and connection failures are retried with
exponential backoff; client errors are not.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests

from common.errors import FetchError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from constants import Constants

logger = logging.getLogger(__name__)

_DEFAULT_HEADERS = {"User-Agent": Constants.USER_AGENT, "Accept": "*/*"}


def _headers(extra: Optional[Dict[str, str]]) -> Dict[str, str]:
    headers = dict(_DEFAULT_HEADERS)
    if extra:
        headers.update(extra)
    return headers


def robust_get(
    url: str,
    *,
    context: str,
    headers: Optional[Dict[str, str]] = None,
    allow_missing: bool = False,
    **kwargs: Any,
) -> Optional[bytes]:
    """GET ``url`` with timeout and retries, returning the body bytes.

    Args:
        url: Target URL.
        context: Archive name used as the log/error tag.
        headers: Extra request headers.
        allow_missing: Return None instead of raising on HTTP 404.
        **kwargs: Passed through to requests.get.

    Raises:
        FetchError: On timeout, connection failure or a non-success status.
    """
    safe_target = safe_url(url)
    last_exception: Optional[Exception] = None

    for attempt in range(Constants.HTTP_RETRY_MAX):
        with Timer() as t:
            try:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP request",
                        extra=extra_context(
                            event="http_request",
                            component="http_client",
                            action="GET",
                            target=safe_target,
                            context=context,
                            attempt=attempt + 1,
                        ),
                    )
                response = requests.get(
                    url,
                    timeout=Constants.REQUEST_TIMEOUT,
                    headers=_headers(headers),
                    **kwargs,
                )
            except requests.Timeout as exc:
                last_exception = exc
                logger.warning("%s request timed out after %s seconds", context, Constants.REQUEST_TIMEOUT)
            except requests.RequestException as exc:  # includes ConnectionError
                last_exception = exc
                logger.warning("%s connection error: %s", context, exc)
            else:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP response",
                        extra=extra_context(
                            event="http_response",
                            component="http_client",
                            action="GET",
                            status_code=response.status_code,
                            duration_ms=t.duration_ms(),
                            target=safe_target,
                        ),
                    )
                if response.status_code == 404 and allow_missing:
                    return None
                if response.status_code < 500:
                    if response.status_code >= 400:
                        raise FetchError(
                            f"HTTP {response.status_code} for {safe_target}",
                            archive=context,
                            url=safe_target,
                            status=response.status_code,
                        )
                    return response.content
                last_exception = FetchError(
                    f"HTTP {response.status_code} for {safe_target}",
                    archive=context,
                    url=safe_target,
                    status=response.status_code,
                )

        if attempt < Constants.HTTP_RETRY_MAX - 1:
            delay = Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** attempt)
            time.sleep(delay)

    if isinstance(last_exception, FetchError):
        raise last_exception
    raise FetchError(
        f"Failed to fetch {safe_target}: {last_exception}",
        archive=context,
        url=safe_target,
    ) from last_exception
