"""reqchain graph - build the @depends graph for a target request file."""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from reqchain.annotations import scan_annotations
from reqchain.errors import ParseError
from reqchain.parser import Request, parse_file

logger = logging.getLogger(__name__)

ParseFn = Callable[[str], list[Request]]


@dataclass
class RequestNode:
    """A request file in the graph. Only its first request is used."""

    path: str
    request: Request
    depends: list[str] = field(default_factory=list)
    extracts: list[tuple[str, str]] = field(default_factory=list)
    query: str | None = None

    @property
    def label(self) -> str:
        return os.path.basename(self.path)


@dataclass
class DependencyGraph:
    """Nodes keyed by normalized path; ``edges[a]`` lists what ``a`` depends on."""

    workdir: str
    nodes: dict[str, RequestNode] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)

    def normalize(self, path: str) -> str:
        return normalize_path(path, self.workdir)

    def dependencies(self, path: str) -> list[str]:
        return self.edges.get(path, [])


def normalize_path(path: str, workdir: str) -> str:
    """Resolve a request path against the working directory.

    ``~`` is expanded and absolute paths are kept as they are.
    """
    p = Path(os.path.expanduser(path))
    if not p.is_absolute():
        p = Path(workdir) / p
    return os.path.normpath(str(p))


def load_node(path: str, parse: ParseFn = parse_file) -> RequestNode:
    """Parse one request file into a RequestNode."""
    try:
        requests = parse(path)
    except ParseError as e:
        raise ParseError(f"failed to parse {path}: {e}", path) from e
    if not requests:
        raise ParseError(f"no requests found in {path}", path)
    request = requests[0]
    ann = scan_annotations(request.doc_lines, source=path)
    return RequestNode(
        path=path,
        request=request,
        depends=ann.depends,
        extracts=ann.extracts,
        query=ann.query,
    )


def build_graph(
    target: str,
    workdir: str,
    parse: ParseFn = parse_file,
) -> DependencyGraph:
    """Parse ``target`` and everything it transitively @depends on.

    Each file is parsed once. Cycles are not an error here; the
    scheduler reports them. Any file in the closure that fails to parse
    aborts the build with an error naming that file.
    """
    graph = DependencyGraph(workdir=workdir)
    root = graph.normalize(target)
    graph.nodes[root] = load_node(root, parse)
    logger.debug("graph root %s", root)
    _add_dependencies(graph, root, parse)
    return graph


def _add_dependencies(graph: DependencyGraph, path: str, parse: ParseFn) -> None:
    node = graph.nodes[path]
    edges = graph.edges.setdefault(path, [])
    for dep in node.depends:
        dep_path = graph.normalize(dep)
        if dep_path not in edges:
            edges.append(dep_path)
        if dep_path in graph.nodes:
            continue
        try:
            graph.nodes[dep_path] = load_node(dep_path, parse)
        except ParseError as e:
            raise ParseError(f"dependency of {node.label}: {e}", dep_path) from e
        logger.debug("%s depends on %s", path, dep_path)
        _add_dependencies(graph, dep_path, parse)
