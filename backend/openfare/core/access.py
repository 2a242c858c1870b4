"""Path classification table consulted once per request by the request gate."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Sequence

from openfare.schemas.user import UserRole


class RouteKind(str, Enum):
    EXEMPT = "exempt"
    API = "api"
    PAGE = "page"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class AccessRule:
    """
    Maps a path pattern to how it is gated.

    ``pattern`` matches itself and anything below it on a segment boundary
    (``/api/users`` matches ``/api/users/7`` but not ``/api/usersx``), or only
    itself when ``exact`` is set. An empty ``roles`` set admits any
    authenticated principal.
    """
    pattern: str
    kind: RouteKind
    roles: FrozenSet[UserRole] = frozenset()
    exact: bool = False

    def matches(self, path: str) -> bool:
        if self.exact:
            return path == self.pattern
        base = self.pattern.rstrip("/")
        return path == base or path.startswith(base + "/")

    def permits(self, role: UserRole) -> bool:
        return not self.roles or UserRole(role) in self.roles


UNCLASSIFIED_RULE = AccessRule(pattern="", kind=RouteKind.UNCLASSIFIED)


def _roles(*roles: UserRole) -> FrozenSet[UserRole]:
    return frozenset(roles)


# Order matters: the first matching rule wins.
ACCESS_RULES: Sequence[AccessRule] = (
    AccessRule("/api/auth/login", RouteKind.EXEMPT),
    AccessRule("/api/auth/signup", RouteKind.EXEMPT),
    AccessRule("/api/auth/refresh", RouteKind.EXEMPT),
    AccessRule("/api/auth/logout", RouteKind.EXEMPT),
    AccessRule("/api/users", RouteKind.API, _roles(UserRole.ADMIN)),
    AccessRule("/api", RouteKind.API),
    AccessRule("/", RouteKind.EXEMPT, exact=True),
    AccessRule("/login", RouteKind.EXEMPT),
    AccessRule("/users", RouteKind.PAGE, _roles(UserRole.ADMIN)),
    AccessRule("/dashboard", RouteKind.PAGE),
)


def classify(path: str, rules: Optional[Iterable[AccessRule]] = None) -> AccessRule:
    """Return the first rule matching ``path``, or the unclassified rule."""
    for rule in ACCESS_RULES if rules is None else rules:
        if rule.matches(path):
            return rule
    return UNCLASSIFIED_RULE
