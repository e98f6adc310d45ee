"""
Route policy matching.

Maps a request path to the access rule that governs it. Rules are ranked by
specificity: an exact match beats any prefix, a longer prefix beats a shorter
one, and a path that matches nothing falls back to the default rule. Two
prefix rules of the same length are rejected when the table is loaded, so the
result never depends on declaration order.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from app.features.permissions.roles import Permission, Role
from app.features.policies.schemas import RouteRuleConfig
from app.utils import get_logger


log = get_logger(__name__)


class AccessKind(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ROLE = "role"
    PERMISSIONS = "permissions"


class PermissionMode(str, Enum):
    ALL = "all"
    ANY = "any"


class RouteConfigurationError(ValueError):
    """Raised when the route table is ambiguous or malformed."""


@dataclass(frozen=True)
class RouteRule:
    """Access requirement bound to a path or path prefix."""
    pattern: str
    access: AccessKind
    prefix: bool = False
    role: Optional[Role] = None
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    mode: PermissionMode = PermissionMode.ALL

    @property
    def is_public(self) -> bool:
        return self.access is AccessKind.PUBLIC

    @property
    def path(self) -> str:
        """Normalised path (exact rules) or prefix (prefix rules)."""
        base = self.pattern[:-2] if self.prefix else self.pattern
        return normalize_path(base)

    @classmethod
    def from_config(cls, config: RouteRuleConfig) -> "RouteRule":
        prefix = config.pattern.endswith("/*")
        if config.public:
            access = AccessKind.PUBLIC
        elif config.authenticated:
            access = AccessKind.AUTHENTICATED
        elif config.role is not None:
            access = AccessKind.ROLE
        else:
            access = AccessKind.PERMISSIONS
        return cls(
            pattern=config.pattern,
            access=access,
            prefix=prefix,
            role=config.role,
            permissions=frozenset(config.permissions or ()),
            mode=PermissionMode(config.mode),
        )


def normalize_path(path: str) -> str:
    """Strip query strings and trailing slashes; "" and "/" both become "/"."""
    path = path.split("?", 1)[0].split("#", 1)[0]
    if not path.startswith("/"):
        path = "/" + path
    stripped = path.rstrip("/")
    return stripped or "/"


def _prefix_matches(prefix: str, path: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


def default_rule(role: Optional[Role] = None) -> RouteRule:
    """Fallback for unlisted paths: any authenticated identity, or a pinned role."""
    if role is not None:
        return RouteRule(pattern="*", access=AccessKind.ROLE, prefix=True, role=role)
    return RouteRule(pattern="*", access=AccessKind.AUTHENTICATED, prefix=True)


class RoutePolicyMatcher:
    """
    Immutable route table.

    Args:
        rules: Configured route rules
        fallback: Rule returned when nothing matches

    Raises:
        RouteConfigurationError: On duplicate exact paths or duplicate prefixes
    """

    def __init__(self, rules: Iterable[RouteRule], fallback: Optional[RouteRule] = None):
        exact: Dict[str, RouteRule] = {}
        prefixes: Dict[str, RouteRule] = {}
        for rule in rules:
            table = prefixes if rule.prefix else exact
            key = rule.path
            if key in table:
                raise RouteConfigurationError(
                    f"Route rules {table[key].pattern!r} and {rule.pattern!r} are equally specific"
                )
            table[key] = rule

        self._exact = exact
        # Longest first, so the first hit is the most specific one.
        self._prefixes: Tuple[Tuple[str, RouteRule], ...] = tuple(
            sorted(prefixes.items(), key=lambda item: len(item[0]), reverse=True)
        )
        self.fallback = fallback or default_rule()

    @property
    def rules(self) -> List[RouteRule]:
        return list(self._exact.values()) + [rule for _, rule in self._prefixes]

    def match(self, path: str) -> RouteRule:
        """Return the most specific rule for `path`."""
        path = normalize_path(path)
        rule = self._exact.get(path)
        if rule is not None:
            return rule
        for prefix, rule in self._prefixes:
            if _prefix_matches(prefix, path):
                return rule
        return self.fallback


def build_rules(entries: Iterable[Mapping[str, Any]]) -> List[RouteRule]:
    """Validate raw rule entries and convert them to RouteRule objects."""
    rules = []
    for position, entry in enumerate(entries):
        try:
            config = RouteRuleConfig.model_validate(entry)
        except ValidationError as e:
            raise RouteConfigurationError(f"Invalid route rule #{position}: {e}") from e
        rules.append(RouteRule.from_config(config))
    return rules


def load_route_rules(path: Path) -> List[RouteRule]:
    """Read a JSON list of route rule entries from disk."""
    try:
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        log.error("Cannot read route rules from %s: %s", path, e)
        raise RouteConfigurationError(f"Cannot read route rules from {path}: {e}") from e
    if not isinstance(entries, list):
        raise RouteConfigurationError("Route rules file must contain a JSON list")
    return build_rules(entries)


DEFAULT_ROUTE_RULES: List[Dict[str, Any]] = [
    # Authentication and error pages
    {"pattern": "/", "public": True},
    {"pattern": "/health", "public": True},
    {"pattern": "/login", "public": True},
    {"pattern": "/register", "public": True},
    {"pattern": "/forgot-password", "public": True},
    {"pattern": "/reset-password/*", "public": True},
    {"pattern": "/unauthorized", "public": True},
    {"pattern": "/favicon.ico", "public": True},
    {"pattern": "/static/*", "public": True},
    # Outcomes reported by the authentication service; checked by service key
    {"pattern": "/auth/*", "public": True},
    # API docs are only mounted when enabled
    {"pattern": "/docs/*", "public": True},
    {"pattern": "/redoc", "public": True},
    {"pattern": "/openapi.json", "public": True},

    # Role-gated areas
    {"pattern": "/admin/*", "role": "admin"},
    {"pattern": "/director/*", "role": "director"},

    # Permission-gated areas
    {"pattern": "/dashboard/*", "permissions": ["view:projects"]},
    {"pattern": "/dashboard/admin/*", "role": "admin"},
    {"pattern": "/dashboard/users/*", "permissions": ["manage:users"]},
    {"pattern": "/projects/*", "permissions": ["view:projects"]},
    {"pattern": "/projects/new", "permissions": ["manage:projects"]},
    {"pattern": "/projects/edit/*", "permissions": ["manage:projects"]},
    {"pattern": "/content/*", "permissions": ["manage:content", "submit:content"], "mode": "any"},
    {"pattern": "/users/*", "permissions": ["view:users"]},
    {"pattern": "/users/manage/*", "permissions": ["manage:users"]},
    {"pattern": "/settings/*", "permissions": ["manage:settings"]},
    {"pattern": "/analytics/*", "permissions": ["view:analytics"]},
    {"pattern": "/audit/*", "permissions": ["manage:users", "view:analytics"], "mode": "all"},

    # Self-service endpoints
    {"pattern": "/users/me", "authenticated": True},
    {"pattern": "/permissions/*", "authenticated": True},
]
