"""
Static action:run call graph.

Builds a directed graph (networkx) with an edge ``A -> B`` for every
``action:run`` of B reachable inside A's steps, so cycles are rejected when
the engine is constructed instead of recursing at runtime.
"""

import logging
from typing import Dict, List

import networkx as nx

from .exceptions import ActionRecursionError, ManifestError
from .manifest import ActionConfig
from .steps import iter_action_calls


logger = logging.getLogger(__name__)


def build_action_graph(actions: Dict[str, ActionConfig]) -> nx.DiGraph:
    graph = nx.DiGraph()
    for name, action in actions.items():
        graph.add_node(name)
        for callee in iter_action_calls(action.parsed_steps):
            graph.add_edge(name, callee)
    return graph


def check_action_graph(actions: Dict[str, ActionConfig]) -> nx.DiGraph:
    """
    Validate the static call graph.

    Raises:
        ActionRecursionError: If any action can reach itself through action:run.
        ManifestError: If an action:run names an undeclared action.
    """
    graph = build_action_graph(actions)

    missing = sorted(node for node in graph.nodes if node not in actions)
    if missing:
        callers = sorted({u for u, v in graph.edges if v in missing})
        raise ManifestError(
            f"action:run references unknown action(s) {missing} (from {callers})"
        )

    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return graph
    path: List[str] = [edge[0] for edge in cycle] + [cycle[-1][1]]
    raise ActionRecursionError(
        f"Recursive action:run cycle: {' -> '.join(path)}", call_stack=path
    )
