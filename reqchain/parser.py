"""reqchain parser - read request definitions from .http and .yaml files."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from reqchain.errors import ParseError

HTTP_SUFFIXES = (".http", ".rest")
YAML_SUFFIXES = (".yaml", ".yml")

METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


@dataclass
class Request:
    """One request definition.

    ``doc_lines`` holds the raw comment lines that precede the request
    line. Annotations such as ``@depends`` are read from them.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    name: str = ""
    doc_lines: list[str] = field(default_factory=list)


def parse_file(path: str | Path) -> list[Request]:
    """Parse a request file into its ordered request definitions."""
    p = Path(path)
    if not p.is_file():
        raise ParseError(f"request file not found: {p}", str(p))
    try:
        text = p.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"cannot read {p}: {e}", str(p)) from e

    if p.suffix.lower() in YAML_SUFFIXES:
        return parse_yaml_text(text, str(p))
    return parse_http_text(text, str(p))


# ── .http files ─────────────────────────────────────────────────────────


def _is_comment(line: str) -> bool:
    stripped = line.lstrip()
    return stripped.startswith("#") or stripped.startswith("//")


def parse_http_text(text: str, source: str = "<string>") -> list[Request]:
    """Parse the .http format.

    ### Optional name            <- separator, starts a new request
    # @depends login.http        <- comment / annotation lines
    POST {{baseUrl}}/items       <- request line
    Content-Type: application/json
                                 <- blank line ends headers
    {"name": "x"}                <- body
    """
    requests: list[Request] = []
    current: dict[str, Any] | None = None

    def _flush(at_separator: bool = False) -> None:
        if current is None:
            return
        if not current["method"]:
            if at_separator and current["implicit"]:
                # file header comments before the first ###
                return
            if current["doc_lines"] or current["name"]:
                raise ParseError(
                    f"{source}: request '{current['name'] or len(requests) + 1}' "
                    "has no request line",
                    source,
                )
            return
        body = "\n".join(current["body"]).strip("\n")
        requests.append(
            Request(
                method=current["method"],
                url=current["url"],
                headers=current["headers"],
                body=body or None,
                name=current["name"],
                doc_lines=current["doc_lines"],
            ),
        )

    def _new(name: str = "", implicit: bool = False) -> dict[str, Any]:
        return {
            "name": name,
            "implicit": implicit,
            "method": "",
            "url": "",
            "headers": {},
            "body": [],
            "doc_lines": [],
            "in_body": False,
        }

    for lineno, line in enumerate(text.splitlines(), start=1):
        if line.startswith("###"):
            _flush(at_separator=True)
            current = _new(line[3:].strip())
            continue

        if current is None:
            current = _new(implicit=True)

        if current["in_body"]:
            current["body"].append(line)
            continue

        if not current["method"]:
            if not line.strip():
                continue
            if _is_comment(line):
                current["doc_lines"].append(line)
                continue
            parts = line.split()
            method = parts[0].upper()
            if method not in METHODS or len(parts) < 2:
                raise ParseError(
                    f"{source}:{lineno}: expected 'METHOD URL', got {line.strip()!r}",
                    source,
                )
            current["method"] = method
            current["url"] = parts[1]
            continue

        # Headers until the first blank line
        if not line.strip():
            current["in_body"] = True
            continue
        if _is_comment(line):
            continue
        key, sep, value = line.partition(":")
        if not sep or not key.strip() or line[0] in " \t" or any(c in key for c in " \t{[\"'"):
            current["in_body"] = True
            current["body"].append(line)
            continue
        current["headers"][key.strip()] = value.strip()

    _flush()
    return requests


# ── .yaml files ─────────────────────────────────────────────────────────


def parse_yaml_text(text: str, source: str = "<string>") -> list[Request]:
    """Parse a structured request file.

    The document is a single request mapping, a list of them, or a
    mapping with a ``requests`` list. Structured ``depends`` and
    ``extract`` keys are turned into annotation lines, after the file's
    own comment lines, so that annotations have one interpreter.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(f"{source}: invalid YAML: {e}", source) from e

    if data is None:
        return []
    if isinstance(data, dict) and "requests" in data:
        items = data["requests"] or []
    elif isinstance(data, dict):
        items = [data]
    elif isinstance(data, list):
        items = data
    else:
        raise ParseError(f"{source}: expected a request mapping or list", source)

    comments = [line for line in text.splitlines() if line.lstrip().startswith("#")]

    requests: list[Request] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ParseError(f"{source}: request {i + 1} is not a mapping", source)
        url = item.get("url")
        if not url:
            raise ParseError(f"{source}: request {i + 1} has no url", source)

        doc_lines = list(comments) if i == 0 else []
        doc_lines.extend(_structured_annotations(item, source))

        body = item.get("body")
        if isinstance(body, dict | list):
            body = json.dumps(body)
        elif body is not None:
            body = str(body)

        requests.append(
            Request(
                method=str(item.get("method", "GET")).upper(),
                url=str(url),
                headers={str(k): str(v) for k, v in (item.get("headers") or {}).items()},
                body=body,
                name=str(item.get("name", "")),
                doc_lines=doc_lines,
            ),
        )
    return requests


def _structured_annotations(item: dict, source: str) -> list[str]:
    lines: list[str] = []
    depends = item.get("depends")
    if depends:
        if isinstance(depends, str):
            depends = [depends]
        lines.append("# @depends " + " ".join(_quote(str(d)) for d in depends))
    extract = item.get("extract") or {}
    if not isinstance(extract, dict):
        raise ParseError(f"{source}: 'extract' must map variable names to JMESPath", source)
    for name, expr in extract.items():
        lines.append(f"# @extract {name} {expr}")
    if item.get("query"):
        lines.append(f"# @query {item['query']}")
    return lines


def _quote(path: str) -> str:
    if any(c.isspace() for c in path):
        return '"' + path.replace('"', '\\"') + '"'
    return path
