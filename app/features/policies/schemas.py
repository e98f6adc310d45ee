"""
Pydantic schemas for route policy configuration.
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from app.features.permissions.roles import Permission, Role


class RouteRuleConfig(BaseModel):
    """
    One entry of the route table.

    `pattern` is an exact path ("/login") or a prefix ending in "/*"
    ("/admin/*"). Exactly one access requirement must be given.
    """
    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(..., min_length=1, description="Exact path or prefix ending in /*")
    public: bool = Field(False, description="Skip every check, no session required")
    authenticated: bool = Field(False, description="Any authenticated identity with a known role")
    role: Optional[Role] = Field(None, description="Required role (inheritance applies)")
    permissions: Optional[List[Permission]] = Field(None, description="Required permissions")
    mode: Literal["all", "any"] = Field("all", description="How permissions combine")

    @field_validator("pattern")
    @classmethod
    def pattern_is_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("Route pattern must start with '/'")
        if "*" in v and not v.endswith("/*"):
            raise ValueError("Wildcards are only allowed as a trailing '/*'")
        return v

    @model_validator(mode="after")
    def exactly_one_requirement(self) -> "RouteRuleConfig":
        given = [
            self.public,
            self.authenticated,
            self.role is not None,
            self.permissions is not None,
        ]
        if sum(given) != 1:
            raise ValueError("Route rule needs exactly one of: public, authenticated, role, permissions")
        if self.permissions is not None and not self.permissions:
            raise ValueError("Permission rules need at least one permission")
        return self

