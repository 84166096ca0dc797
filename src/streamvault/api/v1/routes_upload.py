"""Upload API routes."""

import asyncio
import logging
import posixpath
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import FormData, UploadFile

from streamvault.api.dependencies import (
    get_catalog,
    get_progress_store,
    get_rendition_runner,
    get_uploader,
)
from streamvault.api.errors import NO_CACHE_HEADERS, error_response
from streamvault.api.v1.routes_browse import is_video
from streamvault.catalog.paths import join_key, normalize_prefix
from streamvault.catalog.repository import CatalogStore
from streamvault.core.config import settings
from streamvault.models.api import EncodeJobResponse, UploadedFile, UploadErrorItem, UploadResponse
from streamvault.services.renditions import RenditionJobRunner
from streamvault.storage.base import DEFAULT_CONTENT_TYPE, StoredObject
from streamvault.storage.exceptions import InvalidRequestError, ObjectStoreError
from streamvault.storage.progress import ProgressStore
from streamvault.storage.uploader import UploadOrchestrator

router = APIRouter(prefix="/api/v1", tags=["upload"])
logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024
FALSE_VALUES = {"0", "false", "no", "off"}


async def iter_upload(file: UploadFile, chunk_size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read an uploaded form file in chunks."""
    while chunk := await file.read(chunk_size):
        yield chunk


def form_files(form: FormData) -> list[UploadFile]:
    return [value for _, value in form.multi_items() if isinstance(value, UploadFile)]


def form_text(form: FormData, *names: str) -> Optional[str]:
    for name in names:
        value = form.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def declared_size(form: FormData, file: UploadFile) -> Optional[int]:
    """Size announced by the client, else the size measured while receiving the form."""
    raw = form_text(form, "fileSize", "size")
    if raw is not None:
        try:
            size = int(float(raw))
            if size > 0:
                return size
        except ValueError:
            pass
    return file.size


def uploaded_file(obj: StoredObject) -> UploadedFile:
    return UploadedFile(
        id=obj.key,
        name=posixpath.basename(obj.key),
        mime_type=obj.content_type or DEFAULT_CONTENT_TYPE,
        size=obj.size,
        modified_time=obj.uploaded_at,
    )


def dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json", exclude_none=True)


@router.post("/upload-multipart")
async def upload_multipart(
    request: Request,
    uploader: UploadOrchestrator = Depends(get_uploader),
    catalog: CatalogStore = Depends(get_catalog),
) -> JSONResponse:
    """Upload every file part of a multipart form under a common prefix.

    Responds 200 when all files were stored, 207 when some failed and 400
    when none could be stored.
    """
    files: list[UploadedFile] = []
    errors: list[UploadErrorItem] = []

    async with request.form() as form:
        parts = form_files(form)
        if not parts:
            logger.warning(
                "No file parts detected in multipart request",
                extra={
                    "content_type": request.headers.get("content-type"),
                    "content_length": request.headers.get("content-length"),
                },
            )
            return error_response(
                400,
                "no_files",
                "Request did not contain any file parts. Send multipart/form-data with at least one file field.",
            )

        prefix = normalize_prefix(form_text(form, "prefix"))
        job_id = form_text(form, "jobId")

        for part in parts:
            file_name = posixpath.basename(part.filename or "")
            content_type = part.content_type or DEFAULT_CONTENT_TYPE
            if not file_name:
                errors.append(UploadErrorItem(file_name=None, error="Malformed file part (missing filename)"))
                continue
            if settings.UPLOAD_VIDEO_ONLY and not is_video(file_name, content_type):
                errors.append(
                    UploadErrorItem(file_name=file_name, error="Only video files are allowed for this endpoint")
                )
                continue

            key = join_key(prefix, file_name)
            try:
                stored = await uploader.upload_stream(
                    key,
                    iter_upload(part),
                    content_type,
                    declared_size=declared_size(form, part),
                    job_id=job_id,
                )
                await asyncio.to_thread(catalog.record_object, stored)
                files.append(uploaded_file(stored))
            except ObjectStoreError as e:
                errors.append(
                    UploadErrorItem(file_name=file_name, object_key=key, error=str(e), status=e.status, code=e.code)
                )
            except Exception as e:
                logger.error("Upload of form file failed", exc_info=True, extra={"key": key})
                errors.append(UploadErrorItem(file_name=file_name, object_key=key, error=str(e) or "Upload failed"))

    if not files:
        return JSONResponse(
            status_code=400,
            content={
                "error": "no_valid_files",
                "detail": "No valid files uploaded",
                "errors": [dump(e) for e in errors],
            },
            headers=NO_CACHE_HEADERS,
        )

    body = UploadResponse(files=files, errors=errors or None)
    return JSONResponse(status_code=207 if errors else 200, content=dump(body), headers=NO_CACHE_HEADERS)


@router.post("/upload")
async def upload_single(
    request: Request,
    uploader: UploadOrchestrator = Depends(get_uploader),
    catalog: CatalogStore = Depends(get_catalog),
    runner: RenditionJobRunner = Depends(get_rendition_runner),
) -> JSONResponse:
    """Upload one file, or start a rendition job for a video when encoding is requested."""
    async with request.form() as form:
        parts = form_files(form)
        if not parts:
            raise InvalidRequestError("No file provided")

        part = parts[0]
        file_name = posixpath.basename(part.filename or "") or "unnamed"
        content_type = part.content_type or DEFAULT_CONTENT_TYPE
        prefix = normalize_prefix(form_text(form, "prefix"))
        want_encode = (form_text(form, "encode") or "1").lower() not in FALSE_VALUES

        if want_encode and is_video(file_name, content_type):
            job_id = await runner.submit(iter_upload(part), file_name, prefix)
            body = EncodeJobResponse(job_id=job_id, status="started")
            return JSONResponse(content=dump(body), headers=NO_CACHE_HEADERS)

        stored = await uploader.upload_stream(
            join_key(prefix, file_name),
            iter_upload(part),
            content_type,
            declared_size=declared_size(form, part),
            job_id=form_text(form, "jobId"),
        )

    await asyncio.to_thread(catalog.record_object, stored)
    return JSONResponse(content=dump(UploadResponse(files=[uploaded_file(stored)])), headers=NO_CACHE_HEADERS)


@router.get("/upload/progress")
async def upload_progress(
    id: Optional[str] = None,
    progress: ProgressStore = Depends(get_progress_store),
) -> JSONResponse:
    """Return the latest snapshot of an upload or encode job."""
    if not id:
        raise InvalidRequestError("Missing id")
    snapshot = progress.get(id)
    content = snapshot.to_dict() if snapshot else {"status": "unknown"}
    return JSONResponse(content=content, headers={"Cache-Control": "no-store"})
