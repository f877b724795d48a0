# auth.py
import os
import secrets
from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

_TRUE = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class WebAuthSettings:
    """
    Login gate for the JSON API, read from OWAMAIL_WEB_* variables.
    mode "open" disables it (local use only).
    """
    mode: str = "required"
    user: str = "admin"
    password: str = field(default="", repr=False)
    session_secret: str = field(default="", repr=False)
    cookie_secure: bool = True

    @property
    def enabled(self) -> bool:
        return self.mode == "required"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WebAuthSettings":
        env = os.environ if environ is None else environ
        return cls(
            mode=env.get("OWAMAIL_WEB_AUTH_MODE", "required").lower(),
            user=env.get("OWAMAIL_WEB_USER", "admin"),
            password=env.get("OWAMAIL_WEB_PASSWORD", ""),
            session_secret=env.get("OWAMAIL_WEB_SESSION_SECRET", ""),
            cookie_secure=env.get("OWAMAIL_WEB_COOKIE_SECURE", "true").lower() in _TRUE,
        )

    def check(self) -> None:
        if not self.enabled:
            return
        if not self.session_secret:
            raise RuntimeError("Set OWAMAIL_WEB_SESSION_SECRET in .env (long random string)")
        if not self.password:
            raise RuntimeError("Set OWAMAIL_WEB_PASSWORD in .env")


def _settings(request: Request) -> WebAuthSettings:
    return request.app.state.web_auth


def require_session(request: Request) -> None:
    """Route dependency: 401 unless auth is off or the session cookie is logged in."""
    if not _settings(request).enabled:
        return
    if request.session.get("authed") is not True:
        raise HTTPException(status_code=401, detail="Not authenticated")


router = APIRouter(prefix="/api", tags=["auth"])


class AuthStatus(BaseModel):
    mode: Literal["open", "required"]
    authed: Optional[bool] = None


class LoginBody(BaseModel):
    username: str
    password: str


@router.get("/auth/status", response_model=AuthStatus)
async def auth_status(request: Request):
    if not _settings(request).enabled:
        return {"mode": "open"}
    return {"mode": "required", "authed": request.session.get("authed") is True}


@router.post("/login")
async def login(body: LoginBody, request: Request):
    settings = _settings(request)
    if not settings.enabled:
        return {"ok": True}
    # compare both so timing does not reveal which one was wrong
    user_ok = secrets.compare_digest(body.username, settings.user)
    pass_ok = secrets.compare_digest(body.password, settings.password)
    if not (user_ok and pass_ok):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    request.session["authed"] = True
    return {"ok": True}


@router.post("/logout")
async def logout(request: Request):
    if _settings(request).enabled:
        request.session.clear()
    return {"ok": True}


def setup_auth(app: FastAPI, settings: Optional[WebAuthSettings] = None) -> WebAuthSettings:
    settings = settings or WebAuthSettings.from_env()
    settings.check()

    app.state.web_auth = settings
    app.include_router(router)
    if settings.enabled:
        app.add_middleware(
            SessionMiddleware,
            secret_key=settings.session_secret,
            max_age=None,
            same_site="lax",
            https_only=settings.cookie_secure,
        )
    return settings
