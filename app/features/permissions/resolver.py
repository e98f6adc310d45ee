"""
Role graph traversal and permission resolution.

The hierarchy is compiled once into an index-based graph: every role gets a
small integer index and a tuple of parent indices. Ancestor sets are computed
with an explicit stack and a visited set, so a misconfigured cycle can neither
loop forever nor overflow the interpreter stack.

Everything here is read-only after construction and safe to share between
concurrent requests without locking.
"""
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from app.features.permissions.roles import (
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    Permission,
    Role,
)


class RoleGraphError(ValueError):
    """Raised when the configured hierarchy references an undefined role."""


class RoleGraph:
    """Immutable directed graph of role -> parent roles."""

    def __init__(self, edges: Mapping[Role, Iterable[Role]]):
        self._roles: Tuple[Role, ...] = tuple(edges.keys())
        self._index: Dict[Role, int] = {role: i for i, role in enumerate(self._roles)}

        parents: List[Tuple[int, ...]] = []
        for role in self._roles:
            ids = []
            for parent in edges[role]:
                if parent not in self._index:
                    raise RoleGraphError(f"Role {role.value!r} inherits from undefined role {parent!r}")
                ids.append(self._index[parent])
            parents.append(tuple(ids))
        self._parents: Tuple[Tuple[int, ...], ...] = tuple(parents)

        self._ancestors: Tuple[Tuple[Role, ...], ...] = tuple(
            self._traverse(i) for i in range(len(self._roles))
        )

    @property
    def roles(self) -> Tuple[Role, ...]:
        return self._roles

    def parents(self, role: Role) -> Tuple[Role, ...]:
        return tuple(self._roles[i] for i in self._parents[self._index[role]])

    def _traverse(self, start: int) -> Tuple[Role, ...]:
        # Pre-order DFS, parents visited in configuration order.
        visited = {start}
        ordered: List[Role] = []
        stack = list(reversed(self._parents[start]))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            ordered.append(self._roles[current])
            stack.extend(reversed(self._parents[current]))
        return tuple(ordered)

    def inherited_roles(self, role: Role) -> Tuple[Role, ...]:
        """
        Get every role `role` inherits from, directly or transitively.

        The result is ordered by depth-first discovery and never contains
        `role` itself, even when the configuration loops back to it.
        """
        index = self._index.get(role)
        if index is None:
            return ()
        return self._ancestors[index]


class PermissionResolver:
    """
    Answers role and permission membership queries.

    Args:
        graph: Compiled role hierarchy
        grants: Direct role -> permissions mapping (no inheritance baked in)
    """

    def __init__(self, graph: RoleGraph, grants: Mapping[Role, Iterable[Permission]]):
        self.graph = graph
        self._grants: Dict[Role, FrozenSet[Permission]] = {
            role: frozenset(grants.get(role, ())) for role in graph.roles
        }
        self._resolved: Dict[Role, FrozenSet[Permission]] = {}
        for role in graph.roles:
            permissions: Set[Permission] = set(self._grants[role])
            for ancestor in graph.inherited_roles(role):
                permissions |= self._grants[ancestor]
            self._resolved[role] = frozenset(permissions)

    def direct_permissions(self, role: Role) -> FrozenSet[Permission]:
        return self._grants.get(role, frozenset())

    def inherited_roles(self, role: Role) -> Tuple[Role, ...]:
        return self.graph.inherited_roles(role)

    def resolve_permissions(self, role: Optional[Role]) -> FrozenSet[Permission]:
        """Get all permissions available to a role, including inherited ones."""
        if role is None:
            return frozenset()
        return self._resolved.get(role, frozenset())

    def has_role(self, actual: Optional[Role], required: Role) -> bool:
        """True if `actual` is `required` or inherits from it."""
        if actual is None:
            return False
        if actual == required:
            return True
        return required in self.graph.inherited_roles(actual)

    def has_required_role(self, actual: Optional[Role], required: Iterable[Role]) -> bool:
        """True if `actual` satisfies at least one of `required`."""
        return any(self.has_role(actual, role) for role in required)

    def has_permission(self, role: Optional[Role], permission: Permission) -> bool:
        return permission in self.resolve_permissions(role)

    def has_all_permissions(self, role: Optional[Role], permissions: Iterable[Permission]) -> bool:
        required = list(permissions)
        if not required:
            return False
        granted = self.resolve_permissions(role)
        return all(permission in granted for permission in required)

    def has_any_permission(self, role: Optional[Role], permissions: Iterable[Permission]) -> bool:
        granted = self.resolve_permissions(role)
        return any(permission in granted for permission in permissions)


# Process-wide resolver built from the static configuration
resolver = PermissionResolver(RoleGraph(ROLE_HIERARCHY), ROLE_PERMISSIONS)
