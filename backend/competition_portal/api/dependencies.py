from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from competition_portal.core.config import settings
from competition_portal.core.database import get_db
from competition_portal.core.errors import UnauthorizedError
from competition_portal.core.security import decode_access_token, tokens_match
from competition_portal.models import User

# Extracts the bearer token from the Authorization header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from JWT token.

    Raises 401 for missing/invalid tokens or unknown users, 403 for inactive accounts.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token is None:
        raise credentials_exception

    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception

    # JWT standard uses 'sub' (subject) claim for user identifier
    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise credentials_exception

    try:
        user_id: int = int(user_id_str)
    except (ValueError, TypeError):
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require an authenticated admin."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


async def verify_cleanup_token(authorization: str | None = Header(default=None)) -> None:
    """
    Shared-secret bearer check for the token cleanup endpoint.

    An unset ADMIN_CLEANUP_TOKEN rejects every caller.
    """
    expected = settings.ADMIN_CLEANUP_TOKEN
    if not expected or not authorization or not tokens_match(authorization, f"Bearer {expected}"):
        raise UnauthorizedError("Unauthorized: Invalid or missing admin token")
