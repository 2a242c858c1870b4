"""Server-rendered pages gated by the session cookie"""

from html import escape

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from openfare.api.deps import get_current_principal
from openfare.config import settings
from openfare.schemas.auth import Principal

router = APIRouter()

_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>{title} - {app}</title></head>
<body>
<main>
<h1>{title}</h1>
{body}
</main>
</body>
</html>
"""


def _render(title: str, body: str) -> HTMLResponse:
    return HTMLResponse(_PAGE.format(title=escape(title), app=escape(settings.APP_NAME), body=body))


@router.get("/login", response_class=HTMLResponse)
def login_page(next: str = "/dashboard"):
    """Login form; the browser client posts to /api/auth/login."""
    body = (
        '<form method="post" action="/api/auth/login" data-next="{next}">'
        '<label>Email <input type="email" name="email" required></label>'
        '<label>Password <input type="password" name="password" required></label>'
        '<button type="submit">Sign in</button>'
        "</form>"
    ).format(next=escape(next, quote=True))
    return _render("Sign in", body)


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(principal: Principal = Depends(get_current_principal)):
    body = f"<p>Signed in as {escape(principal.email)} ({principal.role.value})</p>"
    return _render("Dashboard", body)


@router.get("/users", response_class=HTMLResponse)
def users_page(principal: Principal = Depends(get_current_principal)):
    body = f"<p>User administration for {escape(principal.email)}</p>"
    return _render("Users", body)
