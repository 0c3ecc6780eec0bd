"""reqchain annotations - @depends / @extract / @query directives in comments."""

import logging
import re
import shlex
from collections.abc import Iterable
from dataclasses import dataclass, field

from reqchain.errors import ParseError

logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r"^\s*(?:#+|//+)\s?")
_VAR_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


@dataclass
class Annotations:
    depends: list[str] = field(default_factory=list)
    extracts: list[tuple[str, str]] = field(default_factory=list)
    query: str | None = None


def _strip_comment(line: str) -> str:
    return _COMMENT_RE.sub("", line, count=1).strip()


def _split_word(text: str) -> tuple[str, str]:
    """Split off the first word at any run of whitespace."""
    parts = text.split(None, 1)
    if not parts:
        return "", ""
    return parts[0], parts[1].strip() if len(parts) > 1 else ""


def scan_annotations(lines: Iterable[str], source: str | None = None) -> Annotations:
    """Collect chaining directives from a request's comment lines.

      # @depends <path> [<path> ...]
      # @extract <varName> <jmesPathExpr>
      # @query <jmesPathExpr>

    Order is preserved. Lines that are not directives are skipped, and so
    are malformed @extract lines. A @depends line without any path is a
    ParseError.
    """
    result = Annotations()
    where = f"{source}: " if source else ""

    for raw in lines:
        line = _strip_comment(raw)
        if not line.startswith("@"):
            continue
        directive, rest = _split_word(line)

        if directive == "@depends":
            if not rest:
                raise ParseError(f"{where}@depends requires at least one path", source)
            try:
                paths = shlex.split(rest)
            except ValueError as e:
                raise ParseError(f"{where}bad @depends line {line!r}: {e}", source) from e
            result.depends.extend(paths)

        elif directive == "@extract":
            name, expr = _split_word(rest)
            if not name or not expr or not _VAR_NAME_RE.match(name):
                logger.debug("%signoring malformed annotation %r", where, line)
                continue
            result.extracts.append((name, expr))

        elif directive == "@query":
            if rest:
                result.query = rest

    return result
