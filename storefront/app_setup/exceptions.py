"""
Gestionnaires d'exceptions.
- 401/403 en redirection HTML vers la page de connexion (si Accept: text/html et pas /api/*).
- Erreurs du checkout traduites en réponses JSON {"detail": ...} avec le code HTTP adapté.
"""
import logging
import urllib.parse
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.status import HTTP_303_SEE_OTHER

from storefront.config import LOGIN_PATH
from storefront.checkout.errors import (
    CheckoutError,
    CheckoutInProgressError,
    FormValidationError,
    GatewayError,
    InvalidTransitionError,
    SessionExpiredError,
    TransportError,
)
from storefront.checkout.service import EmptyCartError
from storefront.checkout.sessions import SessionForbidden, SessionNotFound
from storefront.utils.security import clear_session_cookie

logger = logging.getLogger(__name__)

def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return "text/html" in accept and not request.url.path.startswith("/api/")

def _login_redirect(detail: str) -> RedirectResponse:
    msg = urllib.parse.quote_plus(detail)
    return RedirectResponse(url=f"{LOGIN_PATH}?error={msg}", status_code=HTTP_303_SEE_OTHER)

def checkout_error_status(exc: CheckoutError) -> int:
    if isinstance(exc, FormValidationError):
        return 422
    if isinstance(exc, SessionExpiredError):
        return 401
    if isinstance(exc, (CheckoutInProgressError, InvalidTransitionError)):
        return 409
    if isinstance(exc, (TransportError, GatewayError)):
        return 502
    return 400

def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def html_redirect_on_auth_errors(request: Request, exc: HTTPException):
        if exc.status_code in (401, 403) and _wants_html(request):
            detail = str(getattr(exc, "detail", "")) or (
                "Please sign in" if exc.status_code == 401 else "Forbidden"
            )
            return _login_redirect(detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(CheckoutError)
    async def checkout_error(request: Request, exc: CheckoutError):
        status = checkout_error_status(exc)
        if isinstance(exc, SessionExpiredError):
            # Session perdue: le front est renvoyé vers la connexion
            response = _login_redirect(str(exc)) if _wants_html(request) else JSONResponse(
                status_code=401, content={"detail": str(exc)}
            )
            clear_session_cookie(response)
            return response
        content = {"detail": exc.display_message if isinstance(exc, TransportError) else str(exc)}
        if isinstance(exc, FormValidationError):
            content["errors"] = exc.errors
        if status >= 500:
            logger.warning("checkout.error path=%s status=%s error=%s", request.url.path, status, exc)
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(SessionNotFound)
    async def session_not_found(request: Request, exc: SessionNotFound):
        return JSONResponse(status_code=404, content={"detail": "Checkout session not found"})

    @app.exception_handler(SessionForbidden)
    async def session_forbidden(request: Request, exc: SessionForbidden):
        return JSONResponse(status_code=403, content={"detail": "Checkout session belongs to another user"})
