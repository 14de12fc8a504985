"""
HTTP routes for the media publishing backend.
"""

from __future__ import annotations

import logging
import uuid
from typing import BinaryIO, Iterator, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from mediapub.credentials import CredentialClass
from mediapub.dependencies import (
    Services,
    bearer_credential,
    dev_token_user,
    get_services,
    session_user,
)
from mediapub.documents import PostMetadata
from mediapub.errors import ValidationError
from mediapub.ingest import UploadedFile, check_batch_shape
from mediapub.schemas import (
    ItemResponse,
    LoginRequest,
    LoginResponse,
    LoginSession,
    MessageResponse,
    RefreshTokenRequest,
    ResponseFile,
    SessionTokenResponse,
    SignUpRequest,
    SignUpResponse,
    UploadMetadata,
)
from mediapub.sessions import IssuedTokens

logger = logging.getLogger(__name__)

router = APIRouter()

_METADATA_LIST = TypeAdapter(list[UploadMetadata])
STREAM_CHUNK_SIZE = 64 * 1024


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _token_response(tokens: IssuedTokens) -> SessionTokenResponse:
    return SessionTokenResponse(
        user_id=str(tokens.user_id),
        username=tokens.username,
        session_token=tokens.session_token,
        refresh_token=tokens.refresh_token,
        message="login successfully.",
    )


def _parse_metadata(raw: str) -> list[PostMetadata]:
    try:
        entries = _METADATA_LIST.validate_json(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            message="metadata is not a valid JSON list.", detail=str(exc)
        ) from exc
    return [PostMetadata(**entry.model_dump()) for entry in entries]


def upload_batch(
    file: list[UploadFile] = File(...),
    metadata: str = Form(...),
) -> tuple[list[UploadFile], list[PostMetadata]]:
    """Parse and check the multipart batch before the bearer credential is resolved."""
    entries = _parse_metadata(metadata)
    check_batch_shape(len(file), len(entries))
    return file, entries


def _ingest(
    services: Services,
    user_id: uuid.UUID,
    batch: tuple[list[UploadFile], list[PostMetadata]],
) -> ResponseFile:
    files, metadata = batch
    uploads = [
        UploadedFile(
            stream=upload.file,
            filename=upload.filename,
            content_type=upload.content_type,
        )
        for upload in files
    ]
    stored = services.ingestion.ingest(user_id, uploads, metadata)
    return ResponseFile(file=stored)


def _iter_chunks(stream: BinaryIO) -> Iterator[bytes]:
    with stream:
        while True:
            chunk = stream.read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


@router.get("/ping")
def ping():
    return {"message": "pong"}


@router.post("/signup", response_model=SignUpResponse, status_code=201)
def signup(payload: SignUpRequest, services: Services = Depends(get_services)):
    user = services.accounts.signup(payload.username, payload.password)
    return SignUpResponse(
        user_id=str(user.user_id),
        username=user.username,
        message="User registered successfully",
    )


@router.post("/login", response_model=SessionTokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    tokens = services.accounts.login(
        payload.username,
        payload.password,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _token_response(tokens)


@router.post("/login/session", response_model=LoginResponse)
def session_token_login(
    payload: LoginSession, services: Services = Depends(get_services)
):
    if not payload.session_token.strip():
        raise ValidationError(message="session token is invalid.")
    user_id = services.validator.resolve(
        payload.session_token, CredentialClass.SESSION_TOKEN
    )
    user = services.accounts.get_user(user_id)
    return LoginResponse(
        user_id=str(user.user_id),
        username=user.username,
        message="login successfully.",
    )


@router.post("/login/refresh", response_model=SessionTokenResponse)
def refresh_token(
    payload: RefreshTokenRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    if not payload.refresh_token.strip():
        raise ValidationError(message="refresh token is invalid.")
    tokens = services.sessions.rotate(
        payload.refresh_token,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _token_response(tokens)


@router.post("/logout", response_model=MessageResponse)
def logout(
    credential: str = Depends(bearer_credential),
    services: Services = Depends(get_services),
):
    services.sessions.revoke(credential)
    return MessageResponse(message="logged out successfully.")


@router.post("/upload", response_model=ResponseFile)
def upload(
    batch: tuple = Depends(upload_batch),
    user_id: uuid.UUID = Depends(session_user),
    services: Services = Depends(get_services),
):
    return _ingest(services, user_id, batch)


@router.post("/dev/upload", response_model=ResponseFile)
def dev_upload(
    batch: tuple = Depends(upload_batch),
    user_id: uuid.UUID = Depends(dev_token_user),
    services: Services = Depends(get_services),
):
    return _ingest(services, user_id, batch)


@router.get("/item", response_model=ResponseFile)
def get_all(services: Services = Depends(get_services)):
    return ResponseFile(file=services.retrieval.list_all())


@router.get("/item/{content_id}", response_model=ItemResponse)
def get_one(content_id: str, services: Services = Depends(get_services)):
    view = services.retrieval.resolve(content_id)
    return ItemResponse(
        image=view.filename,
        metadata=UploadMetadata(**view.metadata.as_dict()),
    )


@router.get("/file/{requested_path:path}")
def get_file(requested_path: str, services: Services = Depends(get_services)):
    stream, media_type = services.retrieval.serve_raw(requested_path)
    return StreamingResponse(_iter_chunks(stream), media_type=media_type)
