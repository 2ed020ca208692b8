from fastapi import Request, FastAPI
from fastapi.responses import RedirectResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from storefront.config import COOKIE_SECURE, CORS_ORIGINS, ALLOWED_HOSTS, GATEWAY_SCRIPT_URL

"""
Middlewares transverses du BFF.
- register_basic_middlewares: CORS, TrustedHost.
- register_security_middleware: en-têtes de sécurité et CSP (overlay de paiement autorisé).
- register_no_cache_middleware: aucune mise en cache des vues de checkout.
- register_force_https_middleware: redirection HTTPS derrière proxy.
"""

CHECKOUT_PREFIX = "/api/v1/checkout"

def _origin(url: str) -> str:
    parts = url.split("/")
    return "/".join(parts[:3]) if len(parts) >= 3 else url

def register_basic_middlewares(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=ALLOWED_HOSTS + ["*"] if "*" in CORS_ORIGINS else ALLOWED_HOSTS,
    )

def register_security_middleware(app: FastAPI) -> None:
    """
    En-têtes: X-Frame-Options, X-Content-Type-Options, Referrer-Policy, HSTS (si secure).
    La CSP autorise le script et les frames de la passerelle de paiement.
    """
    gateway_origin = _origin(GATEWAY_SCRIPT_URL)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
        if COOKIE_SECURE:
            response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "base-uri 'self'; object-src 'none'; "
            f"script-src 'self' {gateway_origin}; "
            f"frame-src {gateway_origin} https://api.razorpay.com; "
            f"connect-src 'self' {gateway_origin}"
        )
        return response

def register_no_cache_middleware(app: FastAPI) -> None:
    """Les vues de session contiennent des données de paiement: jamais en cache."""
    @app.middleware("http")
    async def no_cache_for_checkout(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(CHECKOUT_PREFIX):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response

def register_force_https_middleware(app: FastAPI) -> None:
    """Ajouté en dernier afin qu'il s'exécute en premier dans la pile des middlewares."""
    @app.middleware("http")
    async def force_https(request: Request, call_next):
        if request.headers.get("x-forwarded-proto") == "http":
            url = str(request.url).replace("http://", "https://", 1)
            return RedirectResponse(url, status_code=301)
        return await call_next(request)
