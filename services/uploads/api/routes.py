from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Header, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..application.coordinator import UploadCoordinator
from ..application.dto import CompletionPart
from ..domain.upload import (
    CancelledUpload,
    CompletedUpload,
    InitiatedUpload,
    UploadedChunk,
    UploadStatusView,
)
from .validation import DEFAULT_CONTENT_TYPE, parse_chunk_headers, validate_content_type


def _isoformat(value) -> str:
    return value.isoformat().replace("+00:00", "Z")


class InitUploadRequest(BaseModel):
    file_name: str
    total_size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    user_id: str
    user_role: str


class InitUploadResponse(BaseModel):
    upload_id: str
    storage_key: str
    chunk_size: int
    status: str

    @classmethod
    def from_domain(cls, upload: InitiatedUpload) -> "InitUploadResponse":
        return cls(
            upload_id=upload.upload_id,
            storage_key=upload.storage_key,
            chunk_size=upload.chunk_size,
            status=upload.status.value,
        )


class ChunkUploadResponse(BaseModel):
    upload_id: str
    chunk_index: int
    etag: str
    status: str

    @classmethod
    def from_domain(cls, chunk: UploadedChunk) -> "ChunkUploadResponse":
        return cls(
            upload_id=chunk.upload_id,
            chunk_index=chunk.chunk_index,
            etag=chunk.etag,
            status=chunk.status.value,
        )


class CompletionPartPayload(BaseModel):
    part_no: int = Field(ge=1)
    etag: str


class CompleteUploadRequest(BaseModel):
    upload_id: str
    parts: Optional[List[CompletionPartPayload]] = None


class CompleteUploadResponse(BaseModel):
    upload_id: str
    storage_key: str
    status: str

    @classmethod
    def from_domain(cls, completed: CompletedUpload) -> "CompleteUploadResponse":
        return cls(
            upload_id=completed.upload_id,
            storage_key=completed.storage_key,
            status=completed.status.value,
        )


class CancelUploadRequest(BaseModel):
    upload_id: str


class CancelUploadResponse(BaseModel):
    upload_id: str
    status: str

    @classmethod
    def from_domain(cls, cancelled: CancelledUpload) -> "CancelUploadResponse":
        return cls(upload_id=cancelled.upload_id, status=cancelled.status.value)


class UploadStatusResponse(BaseModel):
    upload_id: str
    file_name: str
    total_size: int
    content_type: str
    user_id: str
    user_role: str
    storage_key: str
    status: str
    chunks: List[int]
    uploaded_bytes: int
    chunk_size: int
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, view: UploadStatusView) -> "UploadStatusResponse":
        return cls(
            upload_id=view.upload_id,
            file_name=view.file_name,
            total_size=view.total_size,
            content_type=view.content_type,
            user_id=view.user_id,
            user_role=view.user_role.value,
            storage_key=view.storage_key,
            status=view.status.value,
            chunks=list(view.chunks),
            uploaded_bytes=view.uploaded_bytes,
            chunk_size=view.chunk_size,
            created_at=_isoformat(view.created_at),
            updated_at=_isoformat(view.updated_at),
        )


def create_router(coordinator: UploadCoordinator) -> APIRouter:
    router = APIRouter(prefix="/api/upload", tags=["uploads"])

    @router.post("/init", response_model=InitUploadResponse, status_code=201)
    async def init_upload_endpoint(payload: InitUploadRequest):
        validate_content_type(payload.content_type)
        result = await run_in_threadpool(
            coordinator.init,
            file_name=payload.file_name,
            total_size=payload.total_size,
            content_type=payload.content_type,
            user_id=payload.user_id,
            user_role=payload.user_role,
        )
        return InitUploadResponse.from_domain(result)

    @router.put("/chunk", response_model=ChunkUploadResponse)
    async def upload_chunk_endpoint(
        request: Request,
        x_upload_id: Optional[str] = Header(default=None),
        x_chunk_index: Optional[str] = Header(default=None),
    ):
        upload_id, chunk_index = parse_chunk_headers(x_upload_id, x_chunk_index)
        data = await request.body()
        result = await run_in_threadpool(
            coordinator.chunk, upload_id, chunk_index, data
        )
        return ChunkUploadResponse.from_domain(result)

    @router.post("/complete", response_model=CompleteUploadResponse)
    async def complete_upload_endpoint(payload: CompleteUploadRequest):
        parts = None
        if payload.parts is not None:
            parts = [
                CompletionPart(part_no=part.part_no, etag=part.etag)
                for part in payload.parts
            ]
        result = await run_in_threadpool(
            coordinator.complete, payload.upload_id, parts
        )
        return CompleteUploadResponse.from_domain(result)

    @router.post("/cancel", response_model=CancelUploadResponse)
    async def cancel_upload_endpoint(payload: CancelUploadRequest):
        result = await run_in_threadpool(coordinator.cancel, payload.upload_id)
        return CancelUploadResponse.from_domain(result)

    @router.get("/{upload_id}/status", response_model=UploadStatusResponse)
    async def upload_status_endpoint(upload_id: str):
        view = await run_in_threadpool(coordinator.status, upload_id)
        return UploadStatusResponse.from_domain(view)

    return router
