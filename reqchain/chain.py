"""reqchain chain - run a request file after everything it depends on."""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import math
import threading
from collections.abc import Callable
from typing import Any

import jmespath
from jmespath.exceptions import JMESPathError

from reqchain import executor
from reqchain.errors import ChainCancelled, ExtractionError, RequestError, VariableRangeError
from reqchain.graph import ParseFn, RequestNode, build_graph
from reqchain.parser import Request, parse_file
from reqchain.resolver import DEFAULT_SHELL_TIMEOUT, TextResolver
from reqchain.scheduler import execution_order
from reqchain.variables import VariableStore

logger = logging.getLogger(__name__)


class ChainState(enum.Enum):
    IDLE = "idle"
    BUILDING_GRAPH = "building_graph"
    SCHEDULING = "scheduling"
    EXECUTING = "executing"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    ABORTED = "aborted"


# ── Extraction ──────────────────────────────────────────────────────────


def stringify_value(value: Any) -> str:
    """Convert an extracted JSON value to the string stored in the session.

    Strings pass through, booleans become true/false, numbers use the
    shortest form that parses back to the same value, and arrays/objects
    become compact JSON with sorted keys.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer() and abs(value) < 1e16:
            return str(int(value))
        return repr(value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def extract_variables(
    extracts: list[tuple[str, str]],
    body_text: str,
    source: str = "response",
) -> dict[str, str]:
    """Evaluate @extract pairs against a JSON response body.

    Returns the variables in declaration order. Raises ExtractionError if
    the body is not JSON, an expression is invalid, or a result is null.
    """
    if not extracts:
        return {}
    try:
        data = json.loads(body_text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ExtractionError(
            f"cannot extract variables from {source}: response is not valid JSON",
            source,
        ) from e

    extracted: dict[str, str] = {}
    for name, expr in extracts:
        try:
            value = jmespath.search(expr, data)
        except JMESPathError as e:
            raise ExtractionError(
                f"{source}: failed to extract '{name}' using {expr!r}: {e}",
                source,
            ) from e
        if value is None:
            raise ExtractionError(f"{source}: '{name}': JMESPath {expr!r} returned null", source)
        extracted[name] = stringify_value(value)
    return extracted


# ── Executor ────────────────────────────────────────────────────────────


def merge_headers(defaults: dict[str, str], headers: dict[str, str]) -> dict[str, str]:
    """Request headers win over defaults; names compare case-insensitively."""
    own = {k.lower() for k in headers}
    merged = {k: v for k, v in defaults.items() if k.lower() not in own}
    merged.update(headers)
    return merged


StepCallback = Callable[[int, RequestNode, executor.RequestResult], None]


class ChainExecutor:
    """Build, order and run the chain ending at a target request file.

    Steps run one at a time. Variables extracted by a step are written to
    the store's session before the next step is resolved, and they stay
    there when a later step fails.
    """

    def __init__(
        self,
        store: VariableStore,
        workdir: str = ".",
        execute: Callable[[Request], executor.RequestResult] | None = None,
        parse: ParseFn = parse_file,
        timeout: int = 30,
        shell_timeout: float = DEFAULT_SHELL_TIMEOUT,
        default_headers: dict[str, str] | None = None,
        prompt: Callable[[str, str | None], str] | None = None,
        on_step: StepCallback | None = None,
    ):
        self.store = store
        self.workdir = workdir
        self.execute = execute
        self.parse = parse
        self.timeout = timeout
        self.shell_timeout = shell_timeout
        self.default_headers = dict(default_headers or {})
        self.prompt = prompt
        self.on_step = on_step

        self.state = ChainState.IDLE
        self.current_index = -1
        self.nodes: list[RequestNode] = []

    def plan(self, target: str) -> list[RequestNode]:
        """Build the graph and return the nodes in execution order."""
        self.state = ChainState.BUILDING_GRAPH
        graph = build_graph(target, self.workdir, self.parse)
        self.state = ChainState.SCHEDULING
        order = execution_order(graph, target)
        logger.debug("execution plan: %s", order)
        return [graph.nodes[p] for p in order]

    def run(self, target: str, cancel: threading.Event | None = None) -> executor.RequestResult:
        """Run the chain and return the target request's result.

        Any failure aborts the remaining steps and is re-raised; session
        variables written by completed steps are kept.
        """
        self.state = ChainState.IDLE
        self.current_index = -1
        try:
            self.nodes = self.plan(target)
            resolver = TextResolver(
                self.store,
                shell_timeout=self.shell_timeout,
                prompt=self.prompt,
                cancel=cancel,
                cwd=self.workdir,
            )
            result: executor.RequestResult | None = None
            for i, node in enumerate(self.nodes):
                if cancel is not None and cancel.is_set():
                    raise ChainCancelled(
                        f"Chain cancelled after {i}/{len(self.nodes)} requests",
                        node.path,
                    )
                self.current_index = i
                result = self._run_step(i, node, resolver, cancel)
                if self.on_step is not None and i < len(self.nodes) - 1:
                    self.on_step(i, node, result)
        except Exception:
            self.state = ChainState.ABORTED
            raise
        self.state = ChainState.COMPLETE
        return result

    def _run_step(
        self,
        index: int,
        node: RequestNode,
        resolver: TextResolver,
        cancel: threading.Event | None,
    ) -> executor.RequestResult:
        step = f"Request {index + 1}/{len(self.nodes)} ({node.label})"
        self.state = ChainState.EXECUTING
        resolver.reset()

        request = node.request
        if self.default_headers:
            request = dataclasses.replace(
                request,
                headers=merge_headers(self.default_headers, request.headers),
            )
        try:
            resolved = resolver.resolve_request(request)
        except VariableRangeError as e:
            raise VariableRangeError(e.name, e.detail, node.path, step=step) from e
        if resolver.unresolved:
            logger.debug("%s: unresolved variables %s", step, resolver.unresolved)

        result = self._execute(resolved, cancel)
        if result.error:
            message = f"{step} failed: {result.error}"
            if resolver.shell_errors:
                message += "\n" + "\n".join(f"  shell: {e}" for e in resolver.shell_errors)
            if resolver.unresolved:
                message += "\n  unresolved: " + ", ".join(resolver.unresolved)
            raise RequestError(message, node.path)
        if cancel is not None and cancel.is_set():
            raise ChainCancelled(f"Chain cancelled during {step}", node.path)

        if node.extracts:
            self.state = ChainState.EXTRACTING
            extracted = extract_variables(node.extracts, result.raw_text, node.label)
            for name, value in extracted.items():
                self.store.set_session(name, value)
                logger.debug("%s: extracted %s", step, name)
        return result

    def _execute(self, request: Request, cancel: threading.Event | None) -> executor.RequestResult:
        if self.execute is not None:
            return self.execute(request)
        return executor.execute_request(request, timeout=self.timeout, cancel=cancel)


def run_chain(
    target: str,
    store: VariableStore,
    workdir: str = ".",
    cancel: threading.Event | None = None,
    **kwargs: Any,
) -> executor.RequestResult:
    """Convenience wrapper around ChainExecutor.run()."""
    return ChainExecutor(store, workdir=workdir, **kwargs).run(target, cancel=cancel)


def describe_node(node: RequestNode) -> str:
    """One-line summary of a node's chaining directives."""
    parts: list[str] = []
    if node.depends:
        parts.append("Depends: " + ", ".join(d.rsplit("/", 1)[-1] for d in node.depends))
    if node.extracts:
        parts.append("Extract: " + ", ".join(f"{n}={e}" for n, e in node.extracts))
    return " | ".join(parts)

