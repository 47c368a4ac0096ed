from typing import List, Optional
import os
import time

from fastapi import APIRouter, UploadFile, File
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from core.config import MAX_FILES, UPLOAD_DIR, logger
from utils.archive import cleanup_files

# File magic bytes for image validation
IMAGE_MAGIC_BYTES = {
    b'\xff\xd8\xff': 'image/jpeg',  # JPEG
    b'\x89PNG\r\n\x1a\n': 'image/png',  # PNG
    b'RIFF': 'image/webp',  # WebP (partial - also check for WEBP)
    b'GIF87a': 'image/gif',  # GIF87a
    b'GIF89a': 'image/gif',  # GIF89a
    b'II*\x00': 'image/tiff',  # TIFF (little-endian)
    b'MM\x00*': 'image/tiff',  # TIFF (big-endian)
    b'BM': 'image/bmp',  # BMP
}

router = APIRouter(prefix="", tags=["upload"])


def _validate_image_content(data: bytes) -> bool:
    """Validate that file content matches expected image magic bytes."""
    if not data or len(data) < 8:
        return False
    if data[:4] == b'RIFF':
        return len(data) > 11 and data[8:12] == b'WEBP'
    for magic in IMAGE_MAGIC_BYTES:
        if data[:len(magic)] == magic:
            return True
    return False


def _stored_name(original: Optional[str]) -> str:
    base = os.path.basename((original or "").replace("\\", "/")).strip() or "image"
    return f"{int(time.time() * 1000)}-{base}"


def _write_upload(name: str, data: bytes) -> None:
    with open(UPLOAD_DIR / name, "wb") as fh:
        fh.write(data)


async def _read_validated(uf: UploadFile) -> bytes:
    data = await uf.read()
    if not _validate_image_content(data):
        raise ValueError(f"{uf.filename or 'file'} is not a supported image")
    return data


async def _store_all(uploads: List[UploadFile]) -> List[dict]:
    """Validate every upload before writing any; a failed write removes what was stored."""
    pending = [(uf.filename, await _read_validated(uf)) for uf in uploads]
    names: List[str] = []
    try:
        for original, data in pending:
            names.append(_stored_name(original))
            await run_in_threadpool(_write_upload, names[-1], data)
    except OSError:
        cleanup_files(UPLOAD_DIR / n for n in names)
        raise
    return [{"filename": n, "path": f"/uploads/{n}"} for n in names]


@router.post("/upload-images")
async def upload_images(images: List[UploadFile] = File(...)):
    if not images:
        return JSONResponse({"error": "No images provided"}, status_code=400)
    if len(images) > MAX_FILES:
        return JSONResponse({"error": f"too many files (max {MAX_FILES})"}, status_code=400)
    try:
        files = await _store_all(images)
    except ValueError as ex:
        logger.warning(f"upload-images rejected: {ex}")
        return JSONResponse({"error": str(ex)}, status_code=400)
    except OSError as ex:
        logger.error(f"Error uploading images: {ex}")
        return JSONResponse({"error": "Failed to upload images"}, status_code=500)
    logger.info(f"stored {len(files)} image(s)")
    return {"files": files}


@router.post("/upload-watermark")
async def upload_watermark(watermark: Optional[UploadFile] = File(None)):
    if watermark is None:
        return JSONResponse({"error": "No watermark file provided"}, status_code=400)
    try:
        stored = await _store_all([watermark])
    except ValueError as ex:
        logger.warning(f"upload-watermark rejected: {ex}")
        return JSONResponse({"error": str(ex)}, status_code=400)
    except OSError as ex:
        logger.error(f"Error uploading watermark: {ex}")
        return JSONResponse({"error": "Failed to upload watermark"}, status_code=500)
    return stored[0]
