"""
Indicator registry - metadata store for every indicator id

Holds IndicatorDescriptor entries and guarantees the dependency relation
over calculated indicators stays acyclic (checked on every registration).
"""

import logging
from collections.abc import Iterable

from core.errors import CyclicDependencyError, UnknownIndicatorError
from core.models.indicators import IndicatorDescriptor, SourceKind

logger = logging.getLogger(__name__)

_IN_PROGRESS = 1
_DONE = 2


class IndicatorRegistry:
    """
    Registry of indicator descriptors

    Owned object (no class-level state): construct one per gateway/engine
    graph and pass it in.

    Example:
        >>> registry = IndicatorRegistry()
        >>> registry.register(IndicatorDescriptor(id="WALCL", category="liquidity"))
        >>> registry.register(IndicatorDescriptor(
        ...     id="NET_LIQ", category="liquidity", source_kind="CALCULATED",
        ...     dependencies=["WALCL", "TGA", "RRP"], transform="net_liquidity",
        ... ))
        >>> [d.id for d in registry.list_indicators(source_kind=SourceKind.CALCULATED)]
        ['NET_LIQ']
    """

    def __init__(self, descriptors: Iterable[IndicatorDescriptor] = ()):
        self._indicators: dict[str, IndicatorDescriptor] = {}
        self.register_bulk(descriptors)

    def register(self, descriptor: IndicatorDescriptor) -> None:
        """
        Register (or replace) an indicator

        Dependencies may reference ids registered later; a cycle is detected
        as soon as the edge closing it is registered.

        Raises:
            CyclicDependencyError: If the descriptor closes a dependency cycle
                (registry is left unchanged)
        """
        previous = self._indicators.get(descriptor.id)
        self._indicators[descriptor.id] = descriptor

        if descriptor.is_calculated:
            cycle = self.find_cycle(descriptor.id)
            if cycle:
                if previous is None:
                    del self._indicators[descriptor.id]
                else:
                    self._indicators[descriptor.id] = previous
                logger.error(f"✗ Rejected {descriptor.id}: cycle {' -> '.join(cycle)}")
                raise CyclicDependencyError(cycle)

        logger.debug(f"Registered {descriptor.id} ({descriptor.source_kind.value})")

    def register_bulk(self, descriptors: Iterable[IndicatorDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)

    def unregister(self, indicator_id: str) -> bool:
        return self._indicators.pop(indicator_id, None) is not None

    def get(self, indicator_id: str) -> IndicatorDescriptor | None:
        return self._indicators.get(indicator_id)

    def require(self, indicator_id: str) -> IndicatorDescriptor:
        """
        Get descriptor or raise

        Raises:
            UnknownIndicatorError: If id is not registered
        """
        descriptor = self._indicators.get(indicator_id)
        if descriptor is None:
            raise UnknownIndicatorError(f"Unknown indicator: {indicator_id}")
        return descriptor

    def exists(self, indicator_id: str) -> bool:
        return indicator_id in self._indicators

    def list_indicators(
        self,
        category: str | None = None,
        source_kind: SourceKind | None = None,
        tags: list[str] | None = None,
        search: str | None = None,
    ) -> list[IndicatorDescriptor]:
        """
        Filtered listing, sorted by id

        Args:
            category: Exact category match
            source_kind: RAW or CALCULATED
            tags: Match if the descriptor has any of these tags
            search: Case-insensitive substring of id, name or description
        """
        result = list(self._indicators.values())

        if category is not None:
            result = [d for d in result if d.category == category]
        if source_kind is not None:
            result = [d for d in result if d.source_kind == source_kind]
        if tags:
            result = [d for d in result if any(tag in d.tags for tag in tags)]
        if search:
            needle = search.lower()
            result = [
                d
                for d in result
                if needle in d.id.lower()
                or needle in d.name.lower()
                or needle in d.description.lower()
            ]

        return sorted(result, key=lambda d: d.id)

    def categories(self) -> list[str]:
        return sorted({d.category for d in self._indicators.values()})

    def dependencies_of(self, indicator_id: str, transitive: bool = False) -> list[str]:
        """
        Direct (or transitive, in first-seen order) dependency ids
        """
        if not transitive:
            return list(self._direct_dependencies(indicator_id))

        seen: list[str] = []
        stack = list(reversed(self._direct_dependencies(indicator_id)))
        while stack:
            dep = stack.pop()
            if dep in seen:
                continue
            seen.append(dep)
            stack.extend(reversed(self._direct_dependencies(dep)))
        return seen

    def find_cycle(self, root: str) -> list[str] | None:
        """
        Depth-first search from root for a dependency cycle

        Iterative (explicit stack) so deep graphs never hit the recursion
        limit. Nodes are unvisited, in-progress or done; reaching an
        in-progress node is a cycle.

        Returns:
            Cycle as a path (first == last), or None

        Example:
            >>> registry.find_cycle("A")
            ['A', 'B', 'A']
        """
        state: dict[str, int] = {root: _IN_PROGRESS}
        path = [root]
        stack = [(root, iter(self._direct_dependencies(root)))]

        while stack:
            node, deps = stack[-1]
            for dep in deps:
                dep_state = state.get(dep)
                if dep_state == _IN_PROGRESS:
                    return path[path.index(dep) :] + [dep]
                if dep_state is None:
                    state[dep] = _IN_PROGRESS
                    path.append(dep)
                    stack.append((dep, iter(self._direct_dependencies(dep))))
                    break
            else:
                state[node] = _DONE
                path.pop()
                stack.pop()

        return None

    def validate(self) -> None:
        """
        Check the whole graph (every calculated descriptor)

        Raises:
            CyclicDependencyError: On the first cycle found
        """
        for descriptor in self._indicators.values():
            if descriptor.is_calculated:
                cycle = self.find_cycle(descriptor.id)
                if cycle:
                    raise CyclicDependencyError(cycle)

    def _direct_dependencies(self, indicator_id: str) -> list[str]:
        descriptor = self._indicators.get(indicator_id)
        if descriptor is None or not descriptor.is_calculated:
            return []
        return descriptor.dependencies

    def __contains__(self, indicator_id: str) -> bool:
        return indicator_id in self._indicators

    def __len__(self) -> int:
        return len(self._indicators)
