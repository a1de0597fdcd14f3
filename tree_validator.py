from __future__ import annotations

from errors import CycleDetectedError, InvalidTreeError
from tree_model import Tree


def _check_child_indices(tree: Tree) -> None:
    size = len(tree)
    for index, node in enumerate(tree.nodes):
        if node.is_leaf:
            continue
        for child in (node.yes, node.no, node.missing):
            if not 0 <= child < size:
                raise InvalidTreeError(
                    f"node {index}: child index {child} out of range for tree of size {size}"
                )


def _check_single_parent(tree: Tree) -> None:
    """Fail if any decision node is reached twice walking down from the root.

    Each node expands its distinct children once, so both cycles and
    subtrees shared between two parents are rejected.
    """
    visited = [False] * len(tree)
    stack = [0]

    while stack:
        index = stack.pop()
        node = tree[index]
        if node.is_leaf:
            continue

        if visited[index]:
            raise CycleDetectedError(f"node {index} reached more than once")
        visited[index] = True

        children = [node.yes]
        if node.no != node.yes:
            children.append(node.no)
        if node.missing != node.yes and node.missing != node.no:
            children.append(node.missing)
        stack.extend(reversed(children))


def validate_tree(tree: Tree) -> None:
    if len(tree) == 0:
        raise InvalidTreeError("empty tree")

    _check_child_indices(tree)
    _check_single_parent(tree)
