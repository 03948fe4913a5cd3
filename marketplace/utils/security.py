from fastapi import Request, HTTPException, Depends, WebSocket
from typing import Optional, Dict, Any
import logging
from marketplace.infra.supabase_client import get_supabase

COOKIE_NAME = "sb_access"

logger = logging.getLogger(__name__)

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise l'utilisateur issu de supabase.auth.get_user(access_token): {id, email, role, token}."""
    res = get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
        }
    metadata = user.get("user_metadata") or {}
    return {
        "id": str(user["id"]) if user.get("id") else None,
        "email": user.get("email"),
        "role": str(metadata.get("role") or "user").lower(),
        "token": access_token,
    }

def extract_token(headers, cookies, query_params=None) -> Optional[str]:
    # Hybride: priorité au Bearer, puis cookie de session, puis ?token= (WebSocket navigateur)
    auth_header = headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    token = cookies.get(COOKIE_NAME)
    if not token and query_params is not None:
        token = query_params.get("token")
    return token or None

def resolve_user(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")
    try:
        user = get_user_from_token(token)
    except Exception:
        logger.debug("token rejected by supabase auth", exc_info=True)
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return user

def get_current_user(request: Request) -> Dict[str, Any]:
    return resolve_user(extract_token(request.headers, request.cookies))

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user

def authenticate_websocket(websocket: WebSocket) -> Dict[str, Any]:
    """Même jeton que l'API REST: header Authorization, cookie sb_access ou paramètre ?token=."""
    return resolve_user(extract_token(websocket.headers, websocket.cookies, websocket.query_params))
