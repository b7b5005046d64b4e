"""
Scope de stockage par navigateur: identifiant aléatoire conservé dans la session signée.
"""
import secrets

from fastapi import Request

SESSION_SCOPE_KEY = "sid"

def get_session_scope(request: Request) -> str:
    sid = request.session.get(SESSION_SCOPE_KEY)
    if not sid:
        sid = secrets.token_urlsafe(16)
        request.session[SESSION_SCOPE_KEY] = sid
    return sid
