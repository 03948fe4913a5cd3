"""
Registre central des routers.
- API v1: négociation (chat, demandes de paiement, commandes, passerelle)
- Temps réel: /ws/marketplace-chat
- Health: health_router
"""
from fastapi import FastAPI
from marketplace.negotiation import views as negotiation_views
from marketplace.realtime import views as realtime_views
from marketplace.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    app.include_router(negotiation_views.router)
    app.include_router(realtime_views.router)
    app.include_router(health_router)
