"""HTTP utilities: shared request helpers for the ingestion source."""

import logging
import time as _time

import requests

logger = logging.getLogger("tubechat")

DEFAULT_TIMEOUT = 15  # seconds per request
DEFAULT_RETRIES = 1


class SourceHTTPError(RuntimeError):
    """A collection-source call failed. Message is safe to show users."""


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"HTTP {resp.status_code}"


def request_json(url, params=None, timeout=DEFAULT_TIMEOUT, retries=DEFAULT_RETRIES,
                 session=None, **kwargs) -> dict:
    """GET ``url`` and return the decoded JSON body.

    Timeouts and connection errors are retried ``retries - 1`` times with
    1s, 2s backoff. HTTP errors are raised immediately as SourceHTTPError
    carrying the API's own error message.
    """
    http = session or requests
    last_exc = None
    for attempt in range(1, retries + 1):
        try:
            resp = http.get(url, params=params, timeout=timeout, **kwargs)
        except (requests.exceptions.Timeout,
                requests.exceptions.ConnectionError) as e:
            last_exc = e
            if attempt < retries:
                wait = 2 ** (attempt - 1)
                logger.debug(f"[HTTP] Retry {attempt}/{retries} for {url} (wait {wait}s): {e}")
                _time.sleep(wait)
            continue
        if not resp.ok:
            raise SourceHTTPError(_error_message(resp))
        return resp.json()
    raise SourceHTTPError(f"Request failed: {last_exc}")
