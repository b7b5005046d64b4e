import logging
import secrets
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException, Request

from storefront.config import SUPPORT_ADMIN_TOKEN

logger = logging.getLogger(__name__)

COOKIE_NAME = "storefront_token"
ADMIN_TOKEN_HEADER = "X-Admin-Token"

def bearer_token(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME) or None

async def get_optional_user(request: Request) -> Optional[Dict[str, Any]]:
    """
    Utilisateur authentifié (via GET {BACKEND_API_URL}/auth/me) ou None.
    Le checkout reste accessible aux invités: toute erreur dégrade en None.
    """
    token = bearer_token(request)
    if not token:
        return None
    client: httpx.AsyncClient = request.app.state.backend_client
    try:
        resp = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    except httpx.HTTPError as e:
        logger.warning("security.get_optional_user backend injoignable: %s", e)
        return None
    if resp.status_code != 200:
        return None
    try:
        body = resp.json()
    except ValueError:
        return None
    user = body.get("user") if isinstance(body, dict) and isinstance(body.get("user"), dict) else body
    if not isinstance(user, dict):
        return None
    user_id = user.get("id") or user.get("_id")
    return {
        "id": str(user_id) if user_id else None,
        "email": user.get("email") or "",
        "firstName": user.get("firstName") or "",
        "lastName": user.get("lastName") or "",
        "token": token,
    }

def require_support_admin(request: Request) -> None:
    """Accès support: en-tête X-Admin-Token égal à SUPPORT_ADMIN_TOKEN."""
    if not SUPPORT_ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Accès support désactivé")
    provided = request.headers.get(ADMIN_TOKEN_HEADER, "")
    if not provided or not secrets.compare_digest(provided, SUPPORT_ADMIN_TOKEN):
        raise HTTPException(status_code=403, detail="Accès interdit")
