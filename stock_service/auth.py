"""Single-admin login and the bearer gate in front of every /api route."""
import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config, schemas

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_PROFILE = schemas.UserProfile(name="Administrator", role="admin")


def login(credentials: schemas.LoginRequest) -> schemas.LoginResponse:
    user_ok = secrets.compare_digest(credentials.username.encode(), config.ADMIN_USER.encode())
    pass_ok = secrets.compare_digest(credentials.password.encode(), config.ADMIN_PASS.encode())
    if not (user_ok and pass_ok):
        logger.warning(f"Failed login for user '{credentials.username}'")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    logger.info(f"User '{credentials.username}' logged in")
    return schemas.LoginResponse(token=config.API_TOKEN, user=ADMIN_PROFILE)


async def require_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> schemas.UserProfile:
    """FastAPI dependency: rejects requests without the configured bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(credentials.credentials.encode(), config.API_TOKEN.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ADMIN_PROFILE
