"""
API request and response models for HostAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

UserResponse never has password_hash or google_id fields, so they cannot be
serialized by accident.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthUser

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Length limits only; the facade enforces the minimum password length so the
    rule lives in one place (PASSWORD_MIN_LENGTH).
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    # bcrypt truncates at 72 bytes
    password: str = Field(min_length=1, max_length=72)
    name: str = Field(min_length=1, max_length=255)
    include_token: bool = False


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)
    include_token: bool = False


class TokenExchangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/token."""

    model_config = ConfigDict(str_strip_whitespace=True)

    target_domain: str = Field(min_length=1, max_length=253)


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}."""

    role: RoleEnum


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    avatar_url: Optional[str]
    role: str
    created_at: str
    last_login_at: str

    @classmethod
    def from_user(cls, user: AuthUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            avatar_url=user.avatar_url,
            role=user.role,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class AuthResponse(BaseModel):
    """Response for register/login. token is present only when include_token was set."""

    user: UserResponse
    token: Optional[str] = None


class MeResponse(BaseModel):
    user: UserResponse


class UserListResponse(BaseModel):
    users: list[UserResponse]


class TokenExchangeResponse(BaseModel):
    """Response for POST /api/v1/auth/token -- a token for another domain."""

    token: str
    domain: str
    expires_in: int


class ErrorDetail(BaseModel):
    """Inner error object inside ErrorResponse."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope for every non-2xx JSON response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
