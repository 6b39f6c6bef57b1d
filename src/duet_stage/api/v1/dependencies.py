"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from duet_stage.core.errors import DuetError
from duet_stage.core.security import InvalidTokenError, decode_user_id
from duet_stage.db.session import get_db
from duet_stage.models import User
from duet_stage.services.views import ChatViews

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        user_id = decode_user_id(credentials.credentials)
    except InvalidTokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_views(db: SessionDep) -> ChatViews:
    """Return the read models bound to the request's session."""
    return ChatViews(db)


def as_http_error(exc: DuetError) -> HTTPException:
    """Translate a domain error into the matching HTTP error."""
    return HTTPException(status_code=exc.http_status, detail=exc.to_response()["error"])


# Type aliases for current user and read-model dependencies
CurrentUserDep = Annotated[User, Depends(get_current_user)]
ViewsDep = Annotated[ChatViews, Depends(get_views)]
