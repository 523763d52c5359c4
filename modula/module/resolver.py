"""
Dependency Resolver.

Computes the activation order of a manifest set together with its
diagnostics. Resolution never aborts: the host must still boot with whatever
subset of modules can be ordered.

1. Depth-first traversal with a path stack records the cycles it closes;
   strongly connected components then flag every remaining cycle member
2. Kahn's algorithm orders every module outside a cycle, foundation-tier
   (zero-dependency) modules first, ties broken by id
"""

import heapq
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from modula.module.catalog import ManifestCatalog
from modula.module.errors import (
    BlockedModuleError,
    CycleError,
    ModuleError,
    UnresolvedDependencyError,
)
from modula.module.manifest import ModuleManifest


@dataclass
class ResolutionResult:
    """
    Output of a resolution pass.

    Attributes:
        order: Activation order (dependencies before dependents)
        cycles: Each cycle as an id chain that ends where it began
        in_cycle: Every id that sits on a cycle
        unresolved: module id -> dependency ids that name no manifest
        foundation: Modules with no dependencies, in id order
        blocked: Modules left out of the order because they depend on a cycle
    """

    order: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    in_cycle: set[str] = field(default_factory=set)
    unresolved: dict[str, list[str]] = field(default_factory=dict)
    foundation: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.cycles or self.unresolved or self.blocked)

    def errors(self) -> list[ModuleError]:
        """Diagnostics as error objects."""
        errors: list[ModuleError] = [CycleError(cycle) for cycle in self.cycles]
        for module_id, missing in self.unresolved.items():
            errors.extend(UnresolvedDependencyError(module_id, dep) for dep in missing)
        errors.extend(
            BlockedModuleError(
                f"Module '{module_id}' depends on a module inside a cycle",
                module_id=module_id,
            )
            for module_id in self.blocked
        )
        return errors


class DependencyResolver:
    """Resolves activation order for a set of manifests."""

    def __init__(self, manifests: ManifestCatalog | Mapping[str, ModuleManifest] | Iterable[ModuleManifest]):
        if isinstance(manifests, ManifestCatalog):
            self._manifests = manifests.snapshot()
        elif isinstance(manifests, Mapping):
            self._manifests = dict(manifests)
        else:
            self._manifests = {m.id: m for m in manifests}

    def _known_dependencies(self, module_id: str) -> list[str]:
        return [
            dep
            for dep in self._manifests[module_id].depends_on
            if dep in self._manifests
        ]

    def _find_cycles(self, result: ResolutionResult) -> None:
        visited: set[str] = set()
        path: list[str] = []
        on_path: set[str] = set()

        def visit(module_id: str) -> None:
            path.append(module_id)
            on_path.add(module_id)

            for dep in self._manifests[module_id].depends_on:
                if dep not in self._manifests:
                    result.unresolved.setdefault(module_id, []).append(dep)
                    continue
                if dep in on_path:
                    cycle = path[path.index(dep):] + [dep]
                    result.cycles.append(cycle)
                    result.in_cycle.update(cycle)
                elif dep not in visited:
                    visit(dep)

            path.pop()
            on_path.discard(module_id)
            visited.add(module_id)

        for module_id in sorted(self._manifests):
            if module_id not in visited:
                visit(module_id)

        # The DFS misses cycles closed through an already finished node;
        # strongly connected components catch every member.
        covered = set(result.in_cycle)
        for component in self._strongly_connected():
            if len(component) == 1:
                only = next(iter(component))
                if only not in self._known_dependencies(only):
                    continue
            result.in_cycle.update(component)
            for member in sorted(component - covered):
                if member in covered:
                    continue
                cycle = self._cycle_through(member, component)
                result.cycles.append(cycle)
                covered.update(cycle)

    def _strongly_connected(self) -> list[set[str]]:
        """Tarjan's algorithm over the known-dependency graph."""
        index: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[set[str]] = []

        def connect(module_id: str) -> None:
            index[module_id] = lowlink[module_id] = len(index)
            stack.append(module_id)
            on_stack.add(module_id)

            for dep in self._known_dependencies(module_id):
                if dep not in index:
                    connect(dep)
                    lowlink[module_id] = min(lowlink[module_id], lowlink[dep])
                elif dep in on_stack:
                    lowlink[module_id] = min(lowlink[module_id], index[dep])

            if lowlink[module_id] == index[module_id]:
                component = set()
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.add(member)
                    if member == module_id:
                        break
                components.append(component)

        for module_id in sorted(self._manifests):
            if module_id not in index:
                connect(module_id)
        return components

    def _cycle_through(self, start: str, component: set[str]) -> list[str]:
        """Shortest chain from start back to itself inside one component."""
        parents: dict[str, str] = {}
        queue = [start]
        while queue:
            current = queue.pop(0)
            for dep in sorted(self._known_dependencies(current)):
                if dep not in component:
                    continue
                if dep == start:
                    chain = [current]
                    while chain[-1] != start:
                        chain.append(parents[chain[-1]])
                    chain.reverse()
                    return chain + [start]
                if dep not in parents:
                    parents[dep] = current
                    queue.append(dep)
        return [start, start]

    def resolve(self) -> ResolutionResult:
        """
        Resolve the activation order.

        Returns:
            ResolutionResult with order and diagnostics
        """
        result = ResolutionResult()
        self._find_cycles(result)
        result.foundation = sorted(
            module_id
            for module_id, manifest in self._manifests.items()
            if manifest.is_foundation
        )

        # Build dependency graph: dependency -> dependents
        graph: dict[str, list[str]] = {module_id: [] for module_id in self._manifests}
        in_degree: dict[str, int] = {}
        for module_id in self._manifests:
            deps = self._known_dependencies(module_id)
            in_degree[module_id] = len(deps)
            for dep in deps:
                graph[dep].append(module_id)

        def rank(module_id: str) -> tuple[int, str]:
            tier = 0 if self._manifests[module_id].is_foundation else 1
            return (tier, module_id)

        queue = [
            rank(module_id)
            for module_id, degree in in_degree.items()
            if degree == 0 and module_id not in result.in_cycle
        ]
        heapq.heapify(queue)

        while queue:
            _, node = heapq.heappop(queue)
            result.order.append(node)

            for dependent in graph[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0 and dependent not in result.in_cycle:
                    heapq.heappush(queue, rank(dependent))

        ordered = set(result.order)
        result.blocked = sorted(
            module_id
            for module_id in self._manifests
            if module_id not in ordered and module_id not in result.in_cycle
        )
        return result

    def dependencies_of(self, module_id: str) -> list[str]:
        """
        All dependencies of a module, direct and transitive.

        Returns:
            Dependency ids in discovery order (unknown ids included)
        """
        seen: set[str] = set()
        result: list[str] = []

        def traverse(current: str) -> None:
            manifest = self._manifests.get(current)
            if manifest is None:
                return
            for dep in manifest.depends_on:
                if dep in seen:
                    continue
                seen.add(dep)
                result.append(dep)
                traverse(dep)

        traverse(module_id)
        return result

    def dependents_of(self, module_ids: Iterable[str]) -> set[str]:
        """
        Modules that depend, directly or transitively, on any of module_ids.

        The given ids themselves are not included unless a cycle leads back
        to them.
        """
        reverse: dict[str, list[str]] = {}
        for module_id, manifest in self._manifests.items():
            for dep in manifest.depends_on:
                reverse.setdefault(dep, []).append(module_id)

        found: set[str] = set()
        stack = list(module_ids)
        while stack:
            current = stack.pop()
            for dependent in reverse.get(current, ()):
                if dependent not in found:
                    found.add(dependent)
                    stack.append(dependent)
        return found


def resolve(manifests: ManifestCatalog | Iterable[ModuleManifest]) -> ResolutionResult:
    """Resolve a manifest set (convenience wrapper)."""
    return DependencyResolver(manifests).resolve()
