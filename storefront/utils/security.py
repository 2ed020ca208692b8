from fastapi import Request, HTTPException, Depends
from fastapi.responses import Response
from typing import Dict, Any
import hashlib

"""
Identité du client auprès du BFF.
L'authentification elle-même est gérée ailleurs: le BFF se contente de relayer le jeton
(Bearer ou cookie) vers la Commerce API et d'en dériver une clé de propriétaire pour les sessions.
"""

COOKIE_NAME = "sf_access"

def owner_key(token: str) -> str:
    """Clé stable et non réversible dérivée du jeton (jamais le jeton en clair dans les logs)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]

def get_access_token(request: Request) -> str:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return token

def require_user(token: str = Depends(get_access_token)) -> Dict[str, Any]:
    return {"id": owner_key(token), "token": token}

def clear_session_cookie(response: Response):
    response.delete_cookie(COOKIE_NAME, path="/")
