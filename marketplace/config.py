# marketplace.config
from pathlib import Path
from decimal import Decimal
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du moteur de négociation/paiement.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, PayPal, Stripe)
- Paramètres métier: taux de commission plateforme, devise de règlement
- Paramètres temps réel: timeout d'envoi, historique anti-doublon par salon
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _float_env(name: str, default: float) -> float:
    try:
        return float(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

# Supabase: URLs et clés (anon pour l'auth, service pour les écritures serveur)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / HTTP
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")

# Commission plateforme (modèle canonique: le client paie la commission)
PLATFORM_FEE_RATE = Decimal(_clean_env(os.getenv("PLATFORM_FEE_RATE")) or "0.05")

# Passerelle de paiement: "paypal" (défaut) ou "stripe"
PAYMENT_GATEWAY = (_clean_env(os.getenv("PAYMENT_GATEWAY")) or "paypal").lower()
PAYMENT_CURRENCY = (_clean_env(os.getenv("PAYMENT_CURRENCY")) or "USD").upper()

# PayPal (Orders v2)
PAYPAL_CLIENT_ID = _clean_env(os.getenv("PAYPAL_CLIENT_ID") or "")
PAYPAL_CLIENT_SECRET = _clean_env(os.getenv("PAYPAL_CLIENT_SECRET") or "")
PAYPAL_ENVIRONMENT = (_clean_env(os.getenv("PAYPAL_ENVIRONMENT")) or "sandbox").lower()
PAYPAL_API_URL = (
    "https://api-m.paypal.com" if PAYPAL_ENVIRONMENT == "live" else "https://api-m.sandbox.paypal.com"
)
PAYPAL_TIMEOUT_SECONDS = _float_env("PAYPAL_TIMEOUT_SECONDS", 30.0)

# Stripe (PaymentIntents en capture manuelle)
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")

# Temps réel (salons WebSocket par Service)
REALTIME_SEND_TIMEOUT_SECONDS = _float_env("REALTIME_SEND_TIMEOUT_SECONDS", 5.0)
REALTIME_DEDUPE_HISTORY = int(_float_env("REALTIME_DEDUPE_HISTORY", 500))
