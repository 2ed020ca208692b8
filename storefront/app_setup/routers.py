"""
Registre central des routers (API checkout, health).
"""
from fastapi import FastAPI
from storefront.checkout.views import router as checkout_router
from storefront.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(checkout_router)
    # Health & monitoring
    app.include_router(health_router)
