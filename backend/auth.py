from __future__ import annotations
import logging
import secrets
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def authenticate_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    return credentials.credentials


def require_admin(token: str = Depends(authenticate_token)) -> str:
    expected = settings.ADMIN_API_TOKEN
    if not expected or not secrets.compare_digest(token.encode(), expected.encode()):
        logger.warning("Rejected admin request with invalid token")
        raise HTTPException(status_code=403, detail="Admin access required")
    return token
