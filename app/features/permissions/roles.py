"""
Static role and permission definitions.

Roles and permissions are closed sets fixed at deploy time. The hierarchy maps
each role to the roles it inherits from: a role holds every permission of its
parents, never the reverse.
"""
from enum import Enum
from typing import Dict, List, Optional, Set


class Role(str, Enum):
    """Authority levels assignable to an identity."""
    ADMIN = "admin"
    DIRECTOR = "director"
    TEAM = "team"
    CLIENT = "client"
    BUILDER = "builder"


class Permission(str, Enum):
    """Capability tokens, granted through roles."""
    MANAGE_USERS = "manage:users"          # Create, update, delete users
    VIEW_USERS = "view:users"              # View user details
    MANAGE_PROJECTS = "manage:projects"    # Create, update, delete projects
    VIEW_PROJECTS = "view:projects"        # View project details
    MANAGE_CONTENT = "manage:content"      # Manage content and assets
    SUBMIT_CONTENT = "submit:content"      # Submit content for review
    VIEW_ANALYTICS = "view:analytics"      # View analytics and reports
    MANAGE_SETTINGS = "manage:settings"    # Manage application settings
    MANAGE_ROLES = "manage:roles"          # Manage user roles


# role -> roles it inherits from
ROLE_HIERARCHY: Dict[Role, List[Role]] = {
    Role.ADMIN: [],
    Role.DIRECTOR: [Role.ADMIN],
    Role.TEAM: [Role.DIRECTOR, Role.ADMIN],
    Role.CLIENT: [],
    Role.BUILDER: [Role.CLIENT],
}

# Direct grants only; inheritance is resolved by the resolver.
ROLE_PERMISSIONS: Dict[Role, Set[Permission]] = {
    Role.ADMIN: set(Permission),
    Role.DIRECTOR: {
        Permission.VIEW_USERS,
        Permission.MANAGE_PROJECTS,
        Permission.VIEW_PROJECTS,
        Permission.MANAGE_CONTENT,
        Permission.SUBMIT_CONTENT,
        Permission.VIEW_ANALYTICS,
    },
    Role.TEAM: {
        Permission.VIEW_PROJECTS,
        Permission.MANAGE_CONTENT,
        Permission.SUBMIT_CONTENT,
        Permission.VIEW_ANALYTICS,
    },
    Role.CLIENT: {
        Permission.VIEW_PROJECTS,
        Permission.SUBMIT_CONTENT,
    },
    Role.BUILDER: {
        Permission.VIEW_PROJECTS,
    },
}

# Roles an actor may hand out when changing another user's role
ASSIGNABLE_ROLES: Dict[Role, Set[Role]] = {
    Role.ADMIN: set(Role),
    Role.DIRECTOR: {Role.CLIENT, Role.BUILDER},
}


def parse_role(value: Optional[str]) -> Optional[Role]:
    """Return the Role for a stored value, or None if it is not a known role."""
    if value is None:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def parse_permission(value: Optional[str]) -> Optional[Permission]:
    """Return the Permission for a token, or None if it is unknown."""
    if value is None:
        return None
    try:
        return Permission(value)
    except ValueError:
        return None
