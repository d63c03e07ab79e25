import os
import secrets

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import Unauthorized
from .lifecycle import Actor

API_PASSWORD = os.getenv("API_PASSWORD", "")

bearer_scheme = HTTPBearer(auto_error=False)


def require_api_password(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Check the shared bearer secret every ``/api`` caller must present."""

    if not API_PASSWORD or credentials is None:
        raise Unauthorized("Unauthorized")
    if not secrets.compare_digest(credentials.credentials.encode("utf-8"), API_PASSWORD.encode("utf-8")):
        raise Unauthorized("Unauthorized")


def get_actor(
    x_user_id: str = Header(..., min_length=1),
    x_user_name: str | None = Header(default=None),
) -> Actor:
    return Actor(user_id=x_user_id, user_name=x_user_name)
