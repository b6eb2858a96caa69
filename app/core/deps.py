from uuid import UUID

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.config import settings
from app.core.security import decode_jwt

bearer = HTTPBearer(auto_error=False)

def get_current_principal(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        principal = decode_jwt(creds.credentials, settings.JWT_SECRET)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        UUID(str(principal.get("sub") or ""))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    principal["role"] = str(principal.get("role") or "").upper()
    return principal

def require_role(*roles: str):
    def _inner(principal: dict = Depends(get_current_principal)) -> dict:
        if principal.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal
    return _inner
