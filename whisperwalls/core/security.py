from datetime import datetime, timedelta, timezone
from typing import Union, Optional, List, Any

from jose import jwt
from pydantic import BaseModel

from whisperwalls.core.config import settings

MODERATOR_ROLE = "moderator"


class TokenPayload(BaseModel):
    sub: Optional[Union[str, Any]] = None
    roles: List[str] = []
    exp: Optional[datetime] = None


def create_access_token(
    subject: Union[str, Any],
    roles: List[str],
    expires_delta: Optional[timedelta] = None,
) -> str:
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode_data = TokenPayload(sub=str(subject), roles=roles, exp=expire)
    to_encode = to_encode_data.model_dump(exclude_none=True)
    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )
    return encoded_jwt
