from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from keyflow.storage.models import User


class ErrorBody(BaseModel):
    error: str


class HealthStatus(BaseModel):
    status: str = "ok"


class PublicUser(BaseModel):
    """User fields safe to hand to the browser."""

    id: str
    login: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    email: Optional[str] = None
    role: str

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            login=user.login,
            name=user.name,
            avatar_url=user.avatar_url,
            email=user.email,
            role=user.role,
        )


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: PublicUser
    csrf_token: str = Field(..., alias="csrfToken")


class UserListResponse(BaseModel):
    items: List[PublicUser]
