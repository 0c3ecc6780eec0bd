"""reqchain executor - HTTP request execution."""

import json
import threading
import time
from typing import Any

import requests

from reqchain.parser import Request


class RequestResult:
    """Result of an HTTP request."""

    def __init__(self):
        self.status_code: int = 0
        self.headers: dict[str, str] = {}
        self.body: Any = None  # parsed JSON or raw text
        self.elapsed_ms: float = 0
        self.error: str | None = None
        self.raw_text: str = ""


def execute_request(
    request: Request,
    timeout: int = 30,
    cancel: threading.Event | None = None,
) -> RequestResult:
    """Execute a resolved request and return structured result.

    - Attempts to parse response as JSON
    - Falls back to raw text
    - Captures timing
    - Never raises - always returns RequestResult with error field set

    ``cancel`` is checked before the request is sent; once in flight the
    request is bounded by ``timeout``.
    """
    result = RequestResult()

    if cancel is not None and cancel.is_set():
        result.error = "Request cancelled"
        return result

    try:
        start = time.monotonic()
        resp = requests.request(
            method=request.method.upper(),
            url=request.url,
            headers=request.headers or None,
            data=request.body.encode("utf-8") if request.body else None,
            timeout=timeout,
            allow_redirects=True,
        )
        result.elapsed_ms = (time.monotonic() - start) * 1000

        result.status_code = resp.status_code
        result.headers = dict(resp.headers)
        result.raw_text = resp.text

        try:
            result.body = resp.json()
        except (json.JSONDecodeError, ValueError):
            result.body = resp.text

    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"
    except Exception as e:
        result.error = f"Unexpected error: {e}"

    return result
