from typing import Annotated, Optional, List
from uuid import UUID
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, ValidationError

from whisperwalls.core.config import settings
from whisperwalls.core.security import MODERATOR_ROLE, TokenPayload
from whisperwalls.services.discovery_service import DiscoveryService
from whisperwalls.services.message_service import MessageLifecycleService
from whisperwalls.services.moderation_engine import ModerationEngine
from whisperwalls.services.mood_insights import MoodInsightsService
from whisperwalls.services.registry import get_registry


reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/token",
    auto_error=False,  # Handle missing token manually for clearer error
)


class CurrentUser(BaseModel):
    """The authenticated caller as described by the bearer token."""

    user_id: UUID
    roles: List[str] = []

    @property
    def is_moderator(self) -> bool:
        return MODERATOR_ROLE in self.roles


async def get_current_user_token_payload(
    token: Annotated[Optional[str], Depends(reusable_oauth2)],
) -> TokenPayload:
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )

    try:
        payload_dict = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        # Validate expiration
        exp_timestamp = payload_dict.get("exp")
        if exp_timestamp:
            exp_datetime = datetime.fromtimestamp(exp_timestamp, tz=timezone.utc)
            if exp_datetime < datetime.now(timezone.utc):
                raise ExpiredSignatureError("Token has expired")

        token_data = TokenPayload(**payload_dict)

    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (JWTError, ValidationError) as e:  # Catch Pydantic validation errors too
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token_data


def _user_from_payload(payload: TokenPayload) -> CurrentUser:
    if payload.sub is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: Subject missing",
        )
    try:
        user_id = UUID(str(payload.sub))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: Subject is not a valid UUID",
        )
    return CurrentUser(user_id=user_id, roles=payload.roles)


async def get_current_user_from_token(
    payload: Annotated[TokenPayload, Depends(get_current_user_token_payload)],
) -> CurrentUser:
    return _user_from_payload(payload)


# --- RBAC Dependencies ---
def require_role(required_roles: List[str]):
    async def role_checker(
        current_user: Annotated[CurrentUser, Depends(get_current_user_from_token)]
    ) -> CurrentUser:
        if not current_user.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User has no roles assigned",
            )

        # Check if the user has ANY of the required roles
        if not any(role in current_user.roles for role in required_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User does not have any of the required roles: {required_roles}",
            )
        return current_user
    return role_checker


async def get_current_moderator(
    current_user: Annotated[CurrentUser, Depends(require_role([MODERATOR_ROLE]))],
) -> CurrentUser:
    return current_user


# Optional auth dependency


async def get_current_user_optional(
    token: Annotated[Optional[str], Depends(reusable_oauth2)],
) -> Optional[CurrentUser]:
    """Return the caller if a valid token was provided, otherwise None (no error)."""

    if token is None:
        return None

    try:
        payload_dict = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenPayload(**payload_dict)
        return _user_from_payload(token_data)
    except (JWTError, ValidationError, HTTPException):
        return None


# ---------------------------------------------------------------------------
# Service dependencies
# ---------------------------------------------------------------------------


def get_lifecycle_service() -> MessageLifecycleService:
    return get_registry().lifecycle


def get_discovery_service() -> DiscoveryService:
    return get_registry().discovery


def get_moderation_engine() -> ModerationEngine:
    return get_registry().moderation


def get_mood_insights_service() -> MoodInsightsService:
    return get_registry().mood
