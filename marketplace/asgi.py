"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn -k uvicorn.workers.UvicornWorker) importe
  `marketplace.asgi:app`.
- Attention: les salons temps réel et les verrous par Service vivent dans le processus;
  le compare-and-set en base protège les écritures entre workers.
"""

from marketplace.app import app

__all__ = ["app"]
