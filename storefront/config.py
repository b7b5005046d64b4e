# storefront.config
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les URLs (backend commerce, base publique) et les secrets (Paystack, Stripe)
- Expose la politique tarifaire (livraison, TVA, devise) et les bornes réseau (timeouts, retries)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_list(name: str, default: str) -> list[str]:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]

# Backend commerce (vérification des paiements, création des commandes, profil)
BACKEND_API_URL = _clean_env(os.getenv("BACKEND_API_URL") or "http://localhost:5000/api")
if BACKEND_API_URL and not BACKEND_API_URL.startswith("http"):
    BACKEND_API_URL = "https://" + BACKEND_API_URL
BACKEND_API_URL = BACKEND_API_URL.rstrip("/")
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

# Politique tarifaire (montants en unités majeures de la devise)
CURRENCY = _clean_env(os.getenv("CURRENCY") or "NGN").upper()
FREE_SHIPPING_THRESHOLD = Decimal(_clean_env(os.getenv("FREE_SHIPPING_THRESHOLD") or "50000"))
FLAT_SHIPPING_FEE = Decimal(_clean_env(os.getenv("FLAT_SHIPPING_FEE") or "2500"))
TAX_RATE = Decimal(_clean_env(os.getenv("TAX_RATE") or "0.075"))
DEFAULT_COUNTRY = os.getenv("DEFAULT_COUNTRY", "Nigeria")
ESTIMATED_DELIVERY = os.getenv("ESTIMATED_DELIVERY", "3-5 jours ouvrés")

# Passerelles de paiement
DEFAULT_GATEWAY = _clean_env(os.getenv("DEFAULT_GATEWAY") or "paystack").lower()
PAYMENT_CHANNELS = _env_list("PAYMENT_CHANNELS", "card,ussd,qr,eft,mobile_money,bank_transfer")
PAYSTACK_PUBLIC_KEY = _clean_env(os.getenv("PAYSTACK_PUBLIC_KEY") or "")
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

# Pages de retour du checkout (passerelles à redirection)
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/checkout?payment=success")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/checkout?payment=cancel")

# Bornes réseau: vérification (suspension bornée) et création de commande (retries transport)
BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))
VERIFY_TIMEOUT_SECONDS = float(os.getenv("VERIFY_TIMEOUT_SECONDS", "15"))
ORDER_SUBMIT_MAX_ATTEMPTS = int(os.getenv("ORDER_SUBMIT_MAX_ATTEMPTS", "3"))
ORDER_SUBMIT_BACKOFF_BASE = float(os.getenv("ORDER_SUBMIT_BACKOFF_BASE", "0.25"))
ORDER_SUBMIT_BACKOFF_MAX = float(os.getenv("ORDER_SUBMIT_BACKOFF_MAX", "2.0"))
ORDER_SUBMIT_BACKOFF_JITTER = float(os.getenv("ORDER_SUBMIT_BACKOFF_JITTER", "0.10"))
# Délai après lequel une tentative verifying/verified sans suite peut être reprise par le support
RECONCILE_STALE_AFTER_SECONDS = float(os.getenv("RECONCILE_STALE_AFTER_SECONDS", "120"))

# Stockage clé-valeur (panier + tentative de paiement)
CART_STORAGE_KEY = os.getenv("CART_STORAGE_KEY", "storefront-cart")
STORE_REDIS_URL = _clean_env(os.getenv("STORE_REDIS_URL") or "")
STORE_KEY_PREFIX = os.getenv("STORE_KEY_PREFIX", "storefront")

# Session / sécurité
SESSION_SECRET_KEY = os.getenv("SESSION_SECRET_KEY", "replace_me_with_a_long_random_secret")
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
SUPPORT_ADMIN_TOKEN = _clean_env(os.getenv("SUPPORT_ADMIN_TOKEN") or "")

# CORS (dev)
CORS_ORIGINS = _env_list("CORS_ORIGINS", "*")
ALLOWED_HOSTS = _env_list("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")
