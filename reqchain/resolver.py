"""reqchain resolver - {{variable}} placeholders and $(shell) substitution."""

from __future__ import annotations

import dataclasses
import logging
import re
import subprocess
import threading
import time
from collections.abc import Callable

from reqchain.errors import ChainCancelled, ShellError
from reqchain.parser import Request
from reqchain.variables import Interactive, VariableStore

logger = logging.getLogger(__name__)

DEFAULT_SHELL_TIMEOUT = 5.0
_POLL_INTERVAL = 0.05

VAR_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")


def find_shell_fragments(text: str) -> list[tuple[int, int, str]]:
    """Locate $(...) fragments with a balanced-parenthesis scan.

    Returns (start, end, command) triples where text[start:end] is the
    whole fragment. Parentheses inside single or double quotes do not
    count. An unterminated $( is not a fragment.
    """
    fragments: list[tuple[int, int, str]] = []
    i = 0
    n = len(text)
    while i < n - 1:
        if text[i] != "$" or text[i + 1] != "(":
            i += 1
            continue
        depth = 1
        quote: str | None = None
        j = i + 2
        while j < n and depth:
            c = text[j]
            if quote:
                if c == "\\" and quote == '"':
                    j += 1
                elif c == quote:
                    quote = None
            elif c in ("'", '"'):
                quote = c
            elif c == "\\":
                j += 1
            elif c == "(":
                depth += 1
            elif c == ")":
                depth -= 1
            j += 1
        if depth:
            # unterminated: nothing after this can close it either
            break
        command = text[i + 2 : j - 1].strip()
        if command:
            fragments.append((i, j, command))
        i = j
    return fragments


def run_shell(
    command: str,
    timeout: float = DEFAULT_SHELL_TIMEOUT,
    cancel: threading.Event | None = None,
    cwd: str | None = None,
) -> str:
    """Run a command through ``sh -c`` and return its trimmed stdout.

    Raises ShellError on non-zero exit or timeout, ChainCancelled when
    ``cancel`` is set while the command is running.
    """
    try:
        proc = subprocess.Popen(
            ["sh", "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=cwd,
        )
    except OSError as e:
        raise ShellError(command, str(e)) from e

    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        try:
            stdout, stderr = proc.communicate(timeout=max(0.0, min(_POLL_INTERVAL, remaining)))
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                proc.kill()
                proc.communicate()
                raise ChainCancelled(f"cancelled while running $({command})") from None
            if time.monotonic() >= deadline:
                proc.kill()
                proc.communicate()
                raise ShellError(command, f"timed out after {timeout:g}s") from None

    if proc.returncode != 0:
        detail = stderr.strip() or f"exit status {proc.returncode}"
        raise ShellError(command, detail)
    return stdout.strip()


class TextResolver:
    """Resolve placeholders in request text against a VariableStore.

    A resolver is meant to live for one chain run: interactive answers are
    remembered for its lifetime, and ``shell_errors`` / ``unresolved``
    accumulate across calls until ``reset()``.
    """

    def __init__(
        self,
        store: VariableStore,
        shell_timeout: float = DEFAULT_SHELL_TIMEOUT,
        prompt: Callable[[str, str | None], str] | None = None,
        cancel: threading.Event | None = None,
        cwd: str | None = None,
    ):
        self.store = store
        self.shell_timeout = shell_timeout
        self.prompt = prompt
        self.cancel = cancel
        self.cwd = cwd
        self.shell_errors: list[ShellError] = []
        self.unresolved: list[str] = []
        self._answers: dict[str, str] = {}

    @property
    def last_shell_error(self) -> ShellError | None:
        return self.shell_errors[-1] if self.shell_errors else None

    def reset(self) -> None:
        """Forget recorded failures (interactive answers are kept)."""
        self.shell_errors = []
        self.unresolved = []

    def resolve(self, text: str) -> str:
        """Shell pass, variable pass, then a second shell pass.

        The second shell pass picks up commands that arrived through a
        variable value, e.g. a profile variable set to ``$(date +%s)``.
        """
        if not text:
            return text
        failed: set[str] = set()
        result = self._resolve_shell(text, failed)
        result = self._resolve_variables(result)
        return self._resolve_shell(result, failed)

    def resolve_request(self, request: Request) -> Request:
        """Return a copy of ``request`` with URL, headers and body resolved."""
        return dataclasses.replace(
            request,
            url=self.resolve(request.url),
            headers={k: self.resolve(v) for k, v in request.headers.items()},
            body=self.resolve(request.body) if request.body is not None else None,
            doc_lines=list(request.doc_lines),
        )

    def _resolve_shell(self, text: str, failed: set[str]) -> str:
        """Substitute each fragment; ones listed in ``failed`` are not re-run."""
        fragments = find_shell_fragments(text)
        if not fragments:
            return text
        parts: list[str] = []
        last = 0
        for start, end, command in fragments:
            parts.append(text[last:start])
            if command in failed:
                parts.append(text[start:end])
                last = end
                continue
            try:
                parts.append(run_shell(command, self.shell_timeout, self.cancel, self.cwd))
            except ShellError as e:
                logger.warning("shell substitution failed: %s", e)
                self.shell_errors.append(e)
                failed.add(command)
                parts.append(text[start:end])
            last = end
        parts.append(text[last:])
        return "".join(parts)

    def _resolve_variables(self, text: str) -> str:
        def _replace(m: re.Match) -> str:
            name = m.group(1).strip()
            value = self._value_for(name)
            if value is None:
                if name not in self.unresolved:
                    self.unresolved.append(name)
                return m.group(0)
            return value

        return VAR_PATTERN.sub(_replace, text)

    def _value_for(self, name: str) -> str | None:
        if name in self._answers:
            return self._answers[name]
        var = self.store.lookup(name)
        if isinstance(var, Interactive) and self.prompt is not None:
            answer = self.prompt(name, var.current(name))
            self._answers[name] = answer
            return answer
        value, found = self.store.get(name)
        return value if found else None
