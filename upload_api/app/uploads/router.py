from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, File, Form, Response, UploadFile, status

from ..dependencies import ManagerDep
from .schemas import (
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    InitializeUploadRequest,
    InitializeUploadResponse,
    MissingChunksResponse,
    UploadProgressResponse,
    UploadSessionResponse,
)

router = APIRouter(
    prefix="/uploads",
    tags=["uploads"],
)


@router.post(
    "/initialize",
    status_code=status.HTTP_201_CREATED,
    response_model=InitializeUploadResponse,
)
async def initialize_upload(
    request: InitializeUploadRequest, manager: ManagerDep
) -> InitializeUploadResponse:
    session = await manager.initialize_upload(
        file_name=request.file_name,
        file_size=request.file_size,
        mime_type=request.mime_type,
        chunk_size=request.chunk_size,
        metadata=request.metadata,
        file_checksum=request.file_checksum,
    )
    return InitializeUploadResponse(
        upload_id=session.upload_id,
        total_chunks=session.total_chunks,
        chunk_size=session.chunk_size,
        expires_at=session.expires_at,
    )


@router.post("/chunk", status_code=status.HTTP_200_OK, response_model=ChunkUploadResponse)
async def upload_chunk(
    manager: ManagerDep,
    upload_id: Annotated[str, Form(alias="uploadId")],
    chunk_index: Annotated[int, Form(alias="chunkIndex")],
    chunk: Annotated[UploadFile, File()],
    checksum: Annotated[str | None, Form()] = None,
) -> ChunkUploadResponse:
    data = await chunk.read()
    result = await manager.upload_chunk(upload_id, chunk_index, data, checksum=checksum)
    return ChunkUploadResponse(**asdict(result))


@router.post(
    "/complete", status_code=status.HTTP_200_OK, response_model=CompleteUploadResponse
)
async def complete_upload(
    request: CompleteUploadRequest, manager: ManagerDep
) -> CompleteUploadResponse:
    completed = await manager.complete_upload(request.upload_id)
    return CompleteUploadResponse(**asdict(completed))


@router.delete("/{upload_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_upload(upload_id: str, manager: ManagerDep) -> Response:
    await manager.cancel_upload(upload_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{upload_id}", response_model=UploadSessionResponse)
async def get_upload_session(upload_id: str, manager: ManagerDep) -> UploadSessionResponse:
    session = await manager.get_upload_session(upload_id)
    return UploadSessionResponse(
        **session.model_dump(exclude={"uploaded_chunks"}),
        uploaded_chunks=sorted(session.uploaded_chunks),
    )


@router.get("/{upload_id}/progress", response_model=UploadProgressResponse)
async def get_upload_progress(
    upload_id: str, manager: ManagerDep
) -> UploadProgressResponse:
    progress = await manager.get_upload_progress(upload_id)
    return UploadProgressResponse(**asdict(progress))


@router.get("/{upload_id}/missing-chunks", response_model=MissingChunksResponse)
async def get_missing_chunks(upload_id: str, manager: ManagerDep) -> MissingChunksResponse:
    missing = await manager.get_missing_chunks(upload_id)
    return MissingChunksResponse(upload_id=upload_id, missing_chunks=missing)
