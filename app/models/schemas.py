from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Credentials(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class SuccessResponse(BaseModel):
    success: Literal[True] = True


class LoginResponse(SuccessResponse):
    token: str


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    message: str


class UserProfile(BaseModel):
    id: int
    email: str
    name: str | None = None
    avatar_url: str | None = None
    auth_provider: str = "local"


class UserResponse(SuccessResponse):
    user: UserProfile


class GoogleProfile(BaseModel):
    id: int
    email: str
    name: str | None = None
    avatar_url: str | None = None
    is_google_user: bool


class GoogleProfileResponse(SuccessResponse):
    user: GoogleProfile


class GoogleUserInfo(BaseModel):
    """Subset of Google's v2 userinfo payload."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    name: str | None = None
    picture: str | None = None


class LearnStatusCreate(BaseModel):
    context_id: int
    err_count: int = Field(ge=0)
    time_record: int = Field(ge=0)
    user_email: str | None = None


class LearnStatusRecord(BaseModel):
    context_id: int
    err_count: int
    time_record: int
    created_at: datetime


class LearnStatusListResponse(SuccessResponse):
    data: list[LearnStatusRecord]


class ServiceInfo(BaseModel):
    name: str
    version: str
    environment: str


class HealthChecks(BaseModel):
    database: Literal["healthy", "unhealthy", "unknown"] = "unknown"
    opentelemetry: Literal["healthy", "unhealthy", "unknown"] = "unknown"


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    timestamp: datetime
    service: ServiceInfo
    checks: HealthChecks


class ReadinessChecks(BaseModel):
    database: bool = False
    environment: bool = False


class ReadinessResponse(BaseModel):
    status: Literal["ready", "not_ready"]
    timestamp: datetime
    checks: ReadinessChecks


class VersionInfo(BaseModel):
    commitHash: str
    buildTime: datetime


class VersionResponse(SuccessResponse):
    data: VersionInfo
