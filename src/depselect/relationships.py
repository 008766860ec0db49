"""Parent/child graph derived from field declarations.

build_relationship_map() runs once per FieldSchema: the result is memoized
under the schema's id, and a cyclic depends_on declaration is rejected
before the map is published.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from collections.abc import Sequence
from typing import Callable

from depselect import _anchor
from depselect.errors import CyclicDependencyError
from depselect.types import FieldConfig, FieldRelationship, FieldSchema

logger = logging.getLogger("depselect.relationships")

RelationshipMap = dict[str, FieldRelationship]


def build_relationship_map(configs: FieldSchema | Sequence[FieldConfig]) -> RelationshipMap:
    """Map every field to its parent tag and its children.

    Usage:
        schema = FieldSchema([
            FieldConfig("country", options=countries),
            FieldConfig("province", depends_on="country", options=provinces),
        ])
        build_relationship_map(schema)["country"].children  # ("province",)
        build_relationship_map(schema) is build_relationship_map(schema)  # True
    """
    schema = FieldSchema.of(configs)
    cached = _anchor.relationship_maps.get(schema._id)
    if cached is not None:
        return cached

    children: dict[str, list[str]] = {config.name: [] for config in schema}
    for config in schema:
        for parent in config.parent_names:
            siblings = children.get(parent)
            if siblings is None:
                logger.warning(
                    "Field %r depends on undeclared field %r", config.name, parent
                )
            elif config.name not in siblings:
                siblings.append(config.name)

    _check_acyclic(children)

    relationships = {
        config.name: FieldRelationship(config.dependency, tuple(children[config.name]))
        for config in schema
    }
    _anchor.relationship_maps[schema._id] = relationships
    return relationships


def _check_acyclic(children: dict[str, list[str]]) -> None:
    """Depth-first search with an explicit stack; raises on the first back edge."""
    done: set[str] = set()
    for root in children:
        if root in done:
            continue
        path: list[str] = [root]
        on_path = {root}
        stack = [iter(children[root])]
        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                finished = path.pop()
                on_path.discard(finished)
                done.add(finished)
                continue
            if child in on_path:
                raise CyclicDependencyError(path[path.index(child):] + [child])
            if child in done:
                continue
            path.append(child)
            on_path.add(child)
            stack.append(iter(children[child]))


def get_descendants(name: str, relationships: RelationshipMap) -> list[str]:
    """All transitive children of name in breadth-first order, each once.

    Usage:
        # country -> province -> city -> ward
        get_descendants("country", relationships)  # ["province", "city", "ward"]
    """
    start = relationships.get(name)
    if start is None or not start.children:
        return []

    descendants: list[str] = []
    seen = {name}
    queue = deque([name])
    while queue:
        current = queue.popleft()
        for child in relationships[current].children:
            if child not in seen:
                seen.add(child)
                descendants.append(child)
                queue.append(child)
    return descendants


def topological_order(
    relationships: RelationshipMap, names: Sequence[str] | None = None
) -> list[str]:
    """Order names so every parent precedes its children.

    Only edges between the given names count. Ties keep the input order, so
    for tree-shaped cascades the result equals the breadth-first order.
    """
    subset = list(relationships) if names is None else list(names)
    members = set(subset)
    rank = {name: position for position, name in enumerate(subset)}
    indegree = dict.fromkeys(subset, 0)
    for name in subset:
        for child in relationships[name].children:
            if child in members:
                indegree[child] += 1

    ready = [(rank[name], name) for name in subset if indegree[name] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for child in relationships[name].children:
            if child in members:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (rank[child], child))
    return order


class DescendantsGetter:
    """get_descendants() with a per-field cache; valid for one immutable map.

    ordered(name) gives the same fields sorted so that a field is always
    visited after every one of its parents inside the descendant set, which
    is what a cascade pass over a diamond-shaped graph needs.
    """

    __slots__ = ("_relationships", "_cache", "_ordered")

    def __init__(self, relationships: RelationshipMap) -> None:
        self._relationships = relationships
        self._cache: dict[str, list[str]] = {}
        self._ordered: dict[str, list[str]] = {}

    def __call__(self, name: str) -> list[str]:
        cached = self._cache.get(name)
        if cached is None:
            cached = self._cache[name] = get_descendants(name, self._relationships)
        return cached

    def ordered(self, name: str) -> list[str]:
        cached = self._ordered.get(name)
        if cached is None:
            cached = self._ordered[name] = topological_order(self._relationships, self(name))
        return cached


def create_descendants_getter(relationships: RelationshipMap) -> Callable[[str], list[str]]:
    return DescendantsGetter(relationships)
