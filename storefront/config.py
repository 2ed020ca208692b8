# storefront.config
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du storefront.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les URLs des services (Commerce API, panier)
- Expose la configuration de la passerelle de paiement (clé publique, script)
- Paramètres d'affichage du récapitulatif (frais de port, taxe) et de la boucle de prix
- Sécurité cookies, CORS/hosts
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _clean_url(v: str) -> str:
    """Préfixe http:// si le schéma manque et retire le slash final."""
    url = _clean_env(v)
    if url and not url.startswith("http"):
        url = "http://" + url
    return url.rstrip("/")

# Commerce API (checkout, paiements) et service panier
# - CART_API_URL retombe sur COMMERCE_API_URL (gateway unique en dev)
COMMERCE_API_URL = _clean_url(os.getenv("COMMERCE_API_URL") or "http://localhost:8080")
CART_API_URL = _clean_url(os.getenv("CART_API_URL") or COMMERCE_API_URL)
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

# Passerelle de paiement (overlay navigateur)
GATEWAY_KEY_ID = _clean_env(os.getenv("GATEWAY_KEY_ID") or os.getenv("RAZORPAY_KEY_ID") or "")
GATEWAY_SCRIPT_URL = _clean_env(os.getenv("GATEWAY_SCRIPT_URL") or "https://checkout.razorpay.com/v1/checkout.js")
STORE_NAME = os.getenv("STORE_NAME", "Storefront")
DEFAULT_CURRENCY = _clean_env(os.getenv("DEFAULT_CURRENCY") or "INR").upper()

# Récapitulatif de commande (formule d'affichage côté client)
SHIPPING_FLAT = Decimal(_clean_env(os.getenv("SHIPPING_FLAT") or "9.99"))
TAX_RATE = Decimal(_clean_env(os.getenv("TAX_RATE") or "0.08"))

# Nombre maximal de réconciliations de prix confirmées par tentative
MAX_PRICE_RECONCILIATIONS = int(os.getenv("MAX_PRICE_RECONCILIATIONS", "2"))

# Durée d'inactivité (secondes) après laquelle une session de checkout est oubliée
CHECKOUT_SESSION_TTL_SECONDS = float(os.getenv("CHECKOUT_SESSION_TTL_SECONDS", "1800"))

# Cookies / Sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
LOGIN_PATH = os.getenv("LOGIN_PATH", "/login")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]
