"""Message graph helpers: roots, the active branch and structural checks.

A conversation's ``mapping`` is a tree of nodes linked by ``parent`` and
``children``. Regenerated answers and edited prompts create sibling
branches; ``current_node`` marks the leaf of the branch the user last saw.
"""

from __future__ import annotations

from collections.abc import Mapping

from gptarchive.api.schemas import ConversationDetail, MappingNode


class GraphError(ValueError):
    """The message graph violates the tree invariants."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = problems


def find_roots(mapping: Mapping[str, MappingNode]) -> list[str]:
    return [node_id for node_id, node in mapping.items() if not node.parent]


def active_thread(detail: ConversationDetail) -> list[MappingNode]:
    """Return the nodes of the active branch, root first.

    With a resolvable ``current_node`` the branch is walked upwards from that
    leaf. Otherwise the first root is followed downwards through each node's
    first child; if upstream reorders ``children`` this can pick a different
    branch than a previous run did.
    """
    mapping = detail.mapping
    current = detail.current_node
    if current and current in mapping:
        path: list[MappingNode] = []
        seen: set[str] = set()
        node_id: str | None = current
        while node_id and node_id in mapping and node_id not in seen:
            seen.add(node_id)
            path.append(mapping[node_id])
            node_id = mapping[node_id].parent
        path.reverse()
        return path

    roots = find_roots(mapping)
    if not roots:
        return []
    thread = [mapping[roots[0]]]
    seen = {roots[0]}
    node = thread[0]
    while node.children:
        next_id = node.children[0]
        if next_id not in mapping or next_id in seen:
            break
        seen.add(next_id)
        node = mapping[next_id]
        thread.append(node)
    return thread


def graph_problems(mapping: Mapping[str, MappingNode]) -> list[str]:
    """Describe every tree invariant the graph breaks (empty when valid)."""
    problems: list[str] = []
    roots = find_roots(mapping)
    if mapping and len(roots) != 1:
        problems.append(f"expected exactly one root, found {len(roots)}")
    for node_id, node in mapping.items():
        if node.parent and node.parent not in mapping:
            problems.append(f"node {node_id} has unknown parent {node.parent}")

    for start in mapping:
        seen: set[str] = set()
        node_id: str | None = start
        while node_id and node_id in mapping:
            if node_id in seen:
                problems.append(f"cycle through node {start}")
                break
            seen.add(node_id)
            node_id = mapping[node_id].parent
    return problems


def validate_graph(detail: ConversationDetail) -> None:
    problems = graph_problems(detail.mapping)
    if problems:
        raise GraphError(problems)


__all__ = ["GraphError", "active_thread", "find_roots", "graph_problems", "validate_graph"]
