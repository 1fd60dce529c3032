"""Browser-based customer portal: sign-in, dashboard and ticket pages."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .auth import AuthErrorKind, AuthService, AuthServiceError
from .config import PortalSettings, load_settings, resolve_config_path
from .context import AuthContext, AuthSnapshot
from .forms import TICKET_TYPES, SignInForm, SignUpForm, TicketForm, validate_form
from .gate import AccessDecision, evaluate_access
from .messages import (
    describe_sign_in_error,
    describe_sign_up_error,
    field_messages,
    locale_name,
    notice,
    role_badge,
    role_name,
)
from .models import AppRole
from .sessions import ContextRegistry
from .supabase_client import ClientFactory, client_factory_for
from .tickets import TicketError, TicketErrorKind, TicketService

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SESSION_COOKIE_NAME = "portal_session"
CONTEXT_SESSION_KEY = "context_token"
DEFAULT_LANDING = "/dashboard"

logger = logging.getLogger("portal.web")

_ANONYMOUS = AuthSnapshot(user=None, session_user_id=None, loading=False, error=None, generation=0)


def _trusted_proxy_hosts(settings: PortalSettings) -> list[str] | str:
    if not settings.trusted_proxies:
        return "*"
    return list(settings.trusted_proxies)


def _safe_redirect_target(value: Optional[str]) -> str:
    """Only allow same-site absolute paths as post sign-in destinations."""
    if not value:
        return DEFAULT_LANDING
    cleaned = value.strip()
    if not cleaned.startswith("/") or cleaned.startswith("//") or "\\" in cleaned:
        return DEFAULT_LANDING
    return cleaned


def _log_transition(snapshot: AuthSnapshot) -> None:
    logger.debug(
        "Session state changed",
        extra={
            "user_id": snapshot.session_user_id,
            "loading": snapshot.loading,
            "refreshing": snapshot.refreshing,
            "generation": snapshot.generation,
            "error": snapshot.error.kind.value if snapshot.error else None,
        },
    )


def create_app(
    *,
    settings: Optional[PortalSettings] = None,
    client_factory: Optional[ClientFactory] = None,
    registry: Optional[ContextRegistry] = None,
) -> FastAPI:
    """Create the customer portal web application."""

    if settings is None:
        settings = load_settings(resolve_config_path(os.getenv("PORTAL_CONFIG")))
    if not settings.session_secret:
        raise RuntimeError("PORTAL_SESSION_SECRET must be configured to use the customer portal")

    if client_factory is None:
        client_factory = client_factory_for(settings)
    if registry is None:
        registry = ContextRegistry(ttl=settings.session_ttl)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            yield
        finally:
            await registry.close_all()

    app = FastAPI(
        title=settings.brand_name,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts(settings))
    app.state.settings = settings
    app.state.registry = registry
    app.state.client_factory = client_factory

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=int(settings.session_ttl.total_seconds()),
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["brand_name"] = settings.brand_name
    templates.env.globals["now"] = lambda: datetime.now(timezone.utc)
    templates.env.globals["role_name"] = role_name
    templates.env.globals["role_badge"] = role_badge
    templates.env.globals["locale_name"] = locale_name

    def _flash(request: Request, message: Tuple[str, str], *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        title, description = message
        messages.append({"title": title, "message": description, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _redirect(request: Request, name: str, **query: str) -> RedirectResponse:
        url = request.url_for(name)
        if query:
            url = url.include_query_params(**query)
        return RedirectResponse(str(url), status_code=status.HTTP_303_SEE_OTHER)

    def _redirect_to_sign_in(request: Request) -> RedirectResponse:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        return _redirect(request, "show_auth", redirect=target)

    def _render(
        request: Request,
        template: str,
        context: Dict[str, object],
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        if "messages" not in context:
            context["messages"] = _consume_flash(request)
        return templates.TemplateResponse(request, template, context, status_code=status_code)

    async def _current_context(request: Request) -> Optional[AuthContext]:
        token = request.session.get(CONTEXT_SESSION_KEY)
        if not token:
            return None
        context = await registry.resolve(token)
        if context is None:
            request.session.pop(CONTEXT_SESSION_KEY, None)
        return context

    async def _open_context(request: Request) -> Tuple[AuthContext, bool]:
        """Return the browser's context, starting an unregistered one if it has none."""
        context = await _current_context(request)
        if context is not None:
            return context, False

        client = await client_factory()
        service = AuthService(client, redirect_url=settings.redirect_url)
        context = AuthContext(client, service=service)
        context.subscribe(_log_transition)
        await context.start()
        return context, True

    async def _retain_new_context(request: Request, context: AuthContext, created: bool) -> None:
        # A context opened for this request is kept only once it holds a session.
        if not created:
            return
        if context.session is None:
            await context.close()
            return
        request.session[CONTEXT_SESSION_KEY] = await registry.register(context)

    async def _snapshot(request: Request) -> Tuple[Optional[AuthContext], AuthSnapshot]:
        context = await _current_context(request)
        if context is None:
            return None, _ANONYMOUS
        await context.settle(settings.refresh_timeout)
        return context, context.snapshot()

    def _loading_page(request: Request) -> HTMLResponse:
        return _render(request, "loading.html", {"target": request.url.path})

    async def _guard(
        request: Request,
        *,
        required_role: Optional[AppRole] = None,
        requires_super_admin: bool = False,
    ) -> Tuple[Optional[AuthContext], AuthSnapshot, Optional[Response]]:
        context, snapshot = await _snapshot(request)
        decision = evaluate_access(
            snapshot.user,
            snapshot.busy,
            required_role=required_role,
            requires_super_admin=requires_super_admin,
        )
        if decision is AccessDecision.RENDER:
            return context, snapshot, None
        if decision is AccessDecision.LOADING:
            return context, snapshot, _loading_page(request)
        if decision is AccessDecision.SIGN_IN:
            if snapshot.signed_in and snapshot.error is not None:
                _flash(request, notice("profile_unavailable"), category="error")
            return context, snapshot, _redirect_to_sign_in(request)
        return context, snapshot, _redirect(request, "dashboard")

    def _render_auth(
        request: Request,
        *,
        tab: str,
        redirect_to: str = "",
        errors: Optional[Dict[str, str]] = None,
        values: Optional[Dict[str, str]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _render(
            request,
            "auth.html",
            {
                "tab": tab,
                "redirect_to": redirect_to,
                "errors": errors or {},
                "values": values or {},
            },
            status_code=status_code,
        )

    def _render_ticket_form(
        request: Request,
        snapshot: AuthSnapshot,
        *,
        errors: Optional[Dict[str, str]] = None,
        values: Optional[Dict[str, str]] = None,
        messages: Optional[List[Dict[str, str]]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        context: Dict[str, object] = {
            "user": snapshot.user,
            "ticket_types": TICKET_TYPES,
            "errors": errors or {},
            "values": values or {"type": "Support"},
        }
        if messages is not None:
            context["messages"] = messages
        return _render(request, "create_ticket.html", context, status_code=status_code)

    @app.get("/", response_class=HTMLResponse, name="index")
    async def index(request: Request):
        _, snapshot = await _snapshot(request)
        if snapshot.busy:
            return _loading_page(request)
        if snapshot.user is not None:
            return _redirect(request, "dashboard")
        return _render(request, "index.html", {})

    @app.get("/auth", response_class=HTMLResponse, name="show_auth")
    async def show_auth(request: Request):
        redirect_to = request.query_params.get("redirect", "")
        _, snapshot = await _snapshot(request)
        if snapshot.busy:
            return _loading_page(request)
        if snapshot.user is not None:
            return RedirectResponse(
                _safe_redirect_target(redirect_to),
                status_code=status.HTTP_303_SEE_OTHER,
            )
        tab = request.query_params.get("tab", "signin")
        if tab not in {"signin", "signup"}:
            tab = "signin"
        return _render_auth(request, tab=tab, redirect_to=redirect_to)

    @app.post("/auth/sign-in", name="sign_in")
    async def sign_in(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        redirect: str = Form(""),
    ):
        result = validate_form(SignInForm, {"email": email, "password": password})
        if not result.is_valid:
            return _render_auth(
                request,
                tab="signin",
                redirect_to=redirect,
                errors=field_messages(result.errors),
                values={"email": email},
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        form = result.form
        context, created = await _open_context(request)
        try:
            await context.sign_in(form.email, form.password)
        except AuthServiceError as exc:
            await _retain_new_context(request, context, created)
            _flash(request, describe_sign_in_error(exc), category="error")
            query = {"tab": "signin"}
            if redirect:
                query["redirect"] = redirect
            return _redirect(request, "show_auth", **query)

        await _retain_new_context(request, context, created)
        await context.settle(settings.refresh_timeout)
        _flash(request, notice("signed_in"), category="success")
        return RedirectResponse(
            _safe_redirect_target(redirect),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    @app.post("/auth/sign-up", name="sign_up")
    async def sign_up(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        confirm_password: str = Form(""),
        first_name: str = Form(""),
        last_name: str = Form(""),
    ):
        result = validate_form(
            SignUpForm,
            {
                "email": email,
                "password": password,
                "confirm_password": confirm_password,
                "first_name": first_name,
                "last_name": last_name,
            },
        )
        if not result.is_valid:
            return _render_auth(
                request,
                tab="signup",
                errors=field_messages(result.errors),
                values={"email": email, "first_name": first_name, "last_name": last_name},
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        form = result.form
        context, created = await _open_context(request)
        try:
            await context.sign_up(form.email, form.password, form.metadata())
        except AuthServiceError as exc:
            await _retain_new_context(request, context, created)
            _flash(request, describe_sign_up_error(exc), category="error")
            tab = "signin" if exc.kind == AuthErrorKind.USER_ALREADY_EXISTS else "signup"
            return _redirect(request, "show_auth", tab=tab)

        await _retain_new_context(request, context, created)
        _flash(request, notice("signed_up"), category="success")
        return _redirect(request, "show_auth", tab="signin")

    @app.api_route("/auth/sign-out", methods=["GET", "POST"], name="sign_out")
    async def sign_out(request: Request):
        token = request.session.get(CONTEXT_SESSION_KEY)
        context = await _current_context(request)
        if context is not None:
            try:
                await context.sign_out()
            except AuthServiceError as exc:
                logger.warning("Sign-out failed: %s", exc)
                _flash(request, notice("sign_out_failed"), category="error")
                return _redirect(request, "dashboard")
            await registry.discard(token)

        request.session.clear()
        _flash(request, notice("signed_out"), category="success")
        return _redirect(request, "show_auth")

    @app.get("/dashboard", response_class=HTMLResponse, name="dashboard")
    async def dashboard(request: Request):
        context, snapshot, denied = await _guard(request)
        if denied is not None:
            return denied

        user = snapshot.user
        account_id = user.account_id
        can_manage_users = user.is_super_admin() or (
            account_id is not None and user.has_role(account_id, AppRole.ACCOUNT_ADMIN)
        )

        tickets = []
        if account_id is not None:
            service = TicketService(context.service.client, auth=context.service)
            try:
                tickets = await service.list_tickets(account_id)
            except TicketError as exc:
                logger.warning("Could not list tickets for %s: %s", account_id, exc)

        return _render(
            request,
            "dashboard.html",
            {
                "user": user,
                "can_manage_users": can_manage_users,
                "is_super_admin": user.is_super_admin(),
                "tickets": tickets,
                "active_tickets": [ticket for ticket in tickets if ticket.is_active],
            },
        )

    @app.get("/create-ticket", response_class=HTMLResponse, name="show_create_ticket")
    async def show_create_ticket(request: Request):
        _, snapshot, denied = await _guard(request)
        if denied is not None:
            return denied
        return _render_ticket_form(request, snapshot)

    @app.post("/create-ticket", name="create_ticket")
    async def create_ticket(
        request: Request,
        subject: str = Form(""),
        ticket_type: str = Form("Support", alias="type"),
        description: str = Form(""),
    ):
        context, snapshot, denied = await _guard(request)
        if denied is not None:
            return denied

        values = {"subject": subject, "type": ticket_type, "description": description}
        result = validate_form(TicketForm, values)
        if not result.is_valid:
            return _render_ticket_form(
                request,
                snapshot,
                errors=field_messages(result.errors),
                values=values,
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        user_id = snapshot.session_user_id
        if user_id is None:
            _flash(request, notice("sign_in_required"), category="error")
            return _redirect_to_sign_in(request)

        service = TicketService(context.service.client, auth=context.service)
        try:
            await service.create_ticket(user_id, result.form)
        except TicketError as exc:
            if exc.kind == TicketErrorKind.NO_ACCOUNT:
                key, status_code = "no_account_link", status.HTTP_409_CONFLICT
            else:
                key, status_code = "ticket_failed", status.HTTP_502_BAD_GATEWAY
            title, description_text = notice(key)
            return _render_ticket_form(
                request,
                snapshot,
                values=values,
                messages=[{"title": title, "message": description_text, "category": "error"}],
                status_code=status_code,
            )

        _flash(request, notice("ticket_created"), category="success")
        return _redirect(request, "dashboard")

    @app.get("/account/members", response_class=HTMLResponse, name="account_members")
    async def account_members(request: Request):
        context, snapshot, denied = await _guard(request, required_role=AppRole.ACCOUNT_ADMIN)
        if denied is not None:
            return denied

        user = snapshot.user
        account_id = user.account_id
        if account_id is None:
            _flash(request, notice("access_denied"), category="error")
            return _redirect(request, "dashboard")

        service = context.service
        try:
            allowed = await service.is_super_admin(user.id) or await service.has_role(
                user.id, account_id, AppRole.ACCOUNT_ADMIN
            )
            if not allowed:
                logger.warning(
                    "Role check denied members page",
                    extra={"user_id": user.id, "account_id": account_id},
                )
                _flash(request, notice("access_denied"), category="error")
                return _redirect(request, "dashboard")
            members = await service.list_account_members(account_id)
        except AuthServiceError as exc:
            logger.warning("Could not load members of %s: %s", account_id, exc)
            _flash(request, notice("members_failed"), category="error")
            return _redirect(request, "dashboard")

        return _render(
            request,
            "members.html",
            {"user": user, "members": members, "account_id": account_id},
        )

    return app


__all__ = ["create_app", "SESSION_COOKIE_NAME"]
