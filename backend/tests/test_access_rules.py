import pytest

from openfare.core.access import AccessRule, RouteKind, classify
from openfare.schemas.user import UserRole


@pytest.mark.parametrize(
    "path, kind",
    [
        ("/api/auth/login", RouteKind.EXEMPT),
        ("/api/auth/refresh", RouteKind.EXEMPT),
        ("/api/auth/me", RouteKind.API),
        ("/api/users", RouteKind.API),
        ("/api/users/7", RouteKind.API),
        ("/api/protected", RouteKind.API),
        ("/", RouteKind.EXEMPT),
        ("/login", RouteKind.EXEMPT),
        ("/dashboard", RouteKind.PAGE),
        ("/dashboard/trips", RouteKind.PAGE),
        ("/users", RouteKind.PAGE),
        ("/health", RouteKind.UNCLASSIFIED),
        ("/apidocs", RouteKind.UNCLASSIFIED),
    ],
)
def test_classify(path, kind):
    assert classify(path).kind == kind


def test_admin_prefix_requires_admin():
    rule = classify("/api/users/7")
    assert rule.permits(UserRole.ADMIN)
    assert not rule.permits(UserRole.OPERATOR)
    assert not rule.permits(UserRole.PASSENGER)


def test_rule_without_roles_admits_everyone():
    rule = classify("/api/protected")
    assert all(rule.permits(role) for role in UserRole)


def test_segment_boundary():
    rule = AccessRule("/api/users", RouteKind.API)
    assert rule.matches("/api/users/")
    assert not rule.matches("/api/usersx")


def test_first_match_wins():
    rules = [
        AccessRule("/reports/public", RouteKind.EXEMPT),
        AccessRule("/reports", RouteKind.PAGE, frozenset({UserRole.OPERATOR})),
    ]
    assert classify("/reports/public/today", rules).kind == RouteKind.EXEMPT
    assert classify("/reports/daily", rules).kind == RouteKind.PAGE
    assert classify("/elsewhere", rules).kind == RouteKind.UNCLASSIFIED
