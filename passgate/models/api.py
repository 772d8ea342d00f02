"""API request/response schemas for FastAPI endpoints."""

from pydantic import BaseModel, Field


class RegisterStartRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1, max_length=128)


class LoginStartRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)


class HealthResponse(BaseModel):
    status: str
    version: str
    rp_id: str
    users: int
    credentials: int
    reservations: int
    sessions: int
