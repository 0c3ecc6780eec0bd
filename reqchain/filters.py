"""reqchain filters - response querying and output formatting."""

from __future__ import annotations

import json
from typing import Any

import jmespath
from jmespath.exceptions import JMESPathError


def query_body(body: Any, expression: str | None) -> Any:
    """Apply a JMESPath expression to a JSON body.

    Non-JSON bodies and empty expressions pass through unchanged.
    Raises ValueError for an invalid expression.
    """
    if not expression or not isinstance(body, dict | list):
        return body
    try:
        return jmespath.search(expression, body)
    except JMESPathError as e:
        raise ValueError(f"Invalid query {expression!r}: {e}") from e


def format_output(
    result,  # RequestResult from executor.py
    query: str | None = None,
    verbose: bool = False,
    raw: bool = False,
) -> str:
    """Format the request result for CLI output.

    STATUS: 200
    TIME: 45ms
    HEADERS:        (verbose only)
    BODY:
    {...}
    """
    if result.error:
        return f"ERROR: {result.error}"

    body = query_body(result.body, query)

    if raw:
        if isinstance(body, dict | list):
            return json.dumps(body, indent=2)
        return str(body) if body is not None else ""

    lines: list[str] = [
        f"STATUS: {result.status_code}",
        f"TIME: {int(result.elapsed_ms)}ms",
    ]

    if verbose and result.headers:
        lines.append("HEADERS:")
        for key, value in result.headers.items():
            lines.append(f"  {key}: {value}")

    if body is not None:
        lines.append("BODY:")
        if isinstance(body, dict | list):
            lines.append(json.dumps(body, indent=2))
        else:
            lines.append(str(body))

    return "\n".join(lines)


def format_step(label: str, result) -> str:
    """Compact status line for an intermediate chain step."""
    return f"[dep: {label}] STATUS: {result.status_code} ({int(result.elapsed_ms)}ms)"
