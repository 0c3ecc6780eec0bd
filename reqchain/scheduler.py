"""reqchain scheduler - dependency-first execution order with cycle detection."""

from reqchain.errors import CycleError
from reqchain.graph import DependencyGraph

_IN_PROGRESS = 1
_DONE = 2


def execution_order(graph: DependencyGraph, target: str) -> list[str]:
    """Return the paths to run so that dependencies come before dependents.

    Depth-first from ``target``; dependencies are visited in the order they
    were declared, so independent branches keep first-discovery order. The
    target is always last. Reaching a node that is still in progress is a
    cycle and raises CycleError naming the node that closed it.
    """
    root = graph.normalize(target)
    if root not in graph.nodes:
        raise ValueError(f"{root} is not in the dependency graph")

    state: dict[str, int] = {}
    order: list[str] = []
    stack: list[str] = []

    def _visit(path: str) -> None:
        mark = state.get(path)
        if mark == _DONE:
            return
        if mark == _IN_PROGRESS:
            cycle = stack[stack.index(path) :] + [path]
            raise CycleError(path, cycle)
        state[path] = _IN_PROGRESS
        stack.append(path)
        for dep in graph.dependencies(path):
            _visit(dep)
        stack.pop()
        state[path] = _DONE
        order.append(path)

    _visit(root)
    return order
