"""
Pydantic schemas for the FastAPI surface.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SignUpRequest(BaseModel):
    username: str
    password: str


class SignUpResponse(BaseModel):
    user_id: str
    username: str
    message: str


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginSession(BaseModel):
    session_token: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LoginResponse(BaseModel):
    user_id: str
    username: str
    message: str


class SessionTokenResponse(BaseModel):
    user_id: str
    username: str
    session_token: str
    refresh_token: str
    message: str


class MessageResponse(BaseModel):
    message: str


class UploadMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., max_length=1024)
    creator: str = ""
    source: str = ""
    description: str = ""


class ResponseFile(BaseModel):
    file: list[str]


class ItemResponse(BaseModel):
    image: str
    metadata: UploadMetadata
