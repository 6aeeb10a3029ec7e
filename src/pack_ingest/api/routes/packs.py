"""Pack ingestion and maintenance endpoints."""

import posixpath
import shutil
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from starlette.datastructures import UploadFile

from ..auth import require_operator
from ...common import get_logger
from ...ingest.archive_reader import BlobArchiveSource, LocalArchiveSource
from ...ingest.categories import Category
from ...ingest.context import IngestContext
from ...ingest.errors import PackNotFoundError
from ...ingest.job import IngestRequest, IngestionJob, SideAsset
from ...ingest.progress import encode_frame
from ...ingest.synchronizer import MetadataSynchronizer
from ...storage.errors import CommitError

router = APIRouter()
logger = get_logger(__name__)

NDJSON = "application/x-ndjson"


class IngestBody(BaseModel):
    """JSON body naming a pre-uploaded archive."""

    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    archive_path: str = Field(alias="archivePath", min_length=1)
    category: str
    title: Optional[str] = None
    thumbnail_path: Optional[str] = Field(default=None, alias="thumbnailPath")
    preview_path: Optional[str] = Field(default=None, alias="previewPath")

    @field_validator('category')
    @classmethod
    def known_category(cls, v: str) -> str:
        Category.parse(v)
        return v


class TitleBody(BaseModel):
    model_config = ConfigDict(extra='forbid')

    title: str = Field(min_length=1, max_length=200)

    @field_validator('title')
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v


def _safe_name(file_name: Optional[str], fallback: str) -> str:
    name = posixpath.basename((file_name or '').replace('\\', '/'))
    return name if name not in ('', '.', '..') else fallback


async def _spool_upload(upload: UploadFile, directory: Path, fallback: str, chunk_size: int) -> Path:
    target = directory / _safe_name(upload.filename, fallback)
    with open(target, 'wb') as out:
        while True:
            chunk = await upload.read(chunk_size)
            if not chunk:
                break
            out.write(chunk)
    await upload.close()
    return target


def _stream_job(job: IngestionJob, upload_dir: Optional[Path] = None) -> Iterator[str]:
    try:
        for frame in job.run():
            yield encode_frame(frame)
    finally:
        if upload_dir is not None:
            shutil.rmtree(upload_dir, ignore_errors=True)


async def _request_from_form(request: Request, context: IngestContext, upload_dir: Path) -> IngestRequest:
    form = await request.form()
    archive = form.get("file")
    if not isinstance(archive, UploadFile) or not archive.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing archive file")
    try:
        category = Category.parse(str(form.get("category", "")))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    chunk_size = context.settings.io_chunk_size
    archive_dir = upload_dir / "archive"
    archive_dir.mkdir()
    archive_path = await _spool_upload(archive, archive_dir, "archive.zip", chunk_size)

    side_assets = {}
    for field_name in ("thumbnail", "preview"):
        upload = form.get(field_name)
        if isinstance(upload, UploadFile) and upload.filename:
            side_dir = upload_dir / field_name
            side_dir.mkdir()
            local = await _spool_upload(upload, side_dir, field_name, chunk_size)
            side_assets[field_name] = SideAsset(file_name=local.name, local_path=local)

    title = form.get("title")
    return IngestRequest(
        source=LocalArchiveSource(archive_path),
        category=category,
        title=title if isinstance(title, str) and title.strip() else None,
        upload_archive=True,
        thumbnail=side_assets.get("thumbnail"),
        preview_clip=side_assets.get("preview"),
    )


async def _request_from_json(request: Request, context: IngestContext) -> IngestRequest:
    try:
        body = IngestBody.model_validate(await request.json())
    except ValidationError as e:
        raise HTTPException(status_code=422,
                            detail=e.errors(include_url=False, include_context=False)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from e

    def side(path: Optional[str]) -> Optional[SideAsset]:
        if not path:
            return None
        return SideAsset(file_name=posixpath.basename(path), blob_path=path)

    return IngestRequest(
        source=BlobArchiveSource(context.blob_store, body.archive_path),
        category=Category.parse(body.category),
        title=body.title,
        upload_archive=False,
        thumbnail=side(body.thumbnail_path),
        preview_clip=side(body.preview_path),
    )


@router.post("/packs/ingest", dependencies=[Depends(require_operator)])
async def ingest_pack(request: Request):
    """Ingest an archive and stream progress as NDJSON.

    Accepts multipart form data (``file``, ``category``, optional
    ``thumbnail``, ``preview``, ``title``) or a JSON body naming an archive
    already in the blob store. The status is 200 whenever the job starts;
    the outcome is the stream's terminal frame.
    """
    context: IngestContext = request.app.state.context
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        scratch_root = context.scratch_root
        scratch_root.mkdir(parents=True, exist_ok=True)
        upload_dir = Path(tempfile.mkdtemp(prefix="upload-", dir=scratch_root))
        try:
            ingest_request = await _request_from_form(request, context, upload_dir)
        except BaseException:
            shutil.rmtree(upload_dir, ignore_errors=True)
            raise
    else:
        upload_dir = None
        ingest_request = await _request_from_json(request, context)

    logger.info(
        "Ingestion requested",
        extra={"extra_fields": {
            "archive": ingest_request.archive_name,
            "category": ingest_request.category.folder,
            "mode": "upload" if upload_dir else "stored",
        }},
    )

    job = IngestionJob(context, ingest_request)
    return StreamingResponse(
        _stream_job(job, upload_dir),
        media_type=NDJSON,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.patch("/packs/{pack_id}/title", dependencies=[Depends(require_operator)])
def rename_pack(pack_id: str, body: TitleBody, request: Request):
    """Change a pack's title and the copy held by each child record."""
    context: IngestContext = request.app.state.context
    synchronizer = MetadataSynchronizer(context.document_store)
    try:
        updated = synchronizer.rename_pack(pack_id, body.title)
    except PackNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except CommitError as e:
        logger.error("Title update failed", extra={"extra_fields": {"pack_id": pack_id, "error": e.message}})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Title update failed") from e

    return {"success": True, "packId": pack_id, "title": body.title, "childrenUpdated": updated}
