from typing import Any, Dict

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from core.config import ARCHIVE_NAME, BATCH_CONCURRENCY, OUTPUT_DIR, UPLOAD_DIR, logger
from core.errors import JobValidationError, WatermarkJobError
from models.job import ProcessingJob
from utils.archive import ArchiveDelivery, build_archive_async, clean_output_dir
from utils.batch import run_batch

router = APIRouter(prefix="", tags=["process"])


@router.post("/process-images")
async def process_images(payload: Dict[str, Any] = Body(None)):
    """
    Watermark every uploaded image with its own placement and return one ZIP.
    Images that fail are left out; if none survive the request fails and the
    output directory is emptied.
    """
    try:
        job = ProcessingJob.from_payload(payload)
    except JobValidationError as ex:
        logger.warning(f"process-images rejected: {ex}")
        return JSONResponse({"error": str(ex)}, status_code=400)

    logger.info(f"process-images: {len(job.images)} image(s), watermark {job.watermark.filename}")
    try:
        results = await run_batch(job, UPLOAD_DIR, OUTPUT_DIR, max_concurrency=BATCH_CONCURRENCY)
        outputs = [r.output_path for r in results]
        archive_path = await build_archive_async(outputs, OUTPUT_DIR / ARCHIVE_NAME)
    except WatermarkJobError as ex:
        logger.error(f"Error in process-images: {ex}")
        clean_output_dir(OUTPUT_DIR)
        return JSONResponse({"error": "Error processing images"}, status_code=500)
    except Exception as ex:
        logger.exception(f"Unexpected error in process-images: {ex}")
        clean_output_dir(OUTPUT_DIR)
        return JSONResponse({"error": "Error processing images"}, status_code=500)

    delivery = ArchiveDelivery(archive_path, outputs)
    headers = {
        "Content-Disposition": f'attachment; filename="{ARCHIVE_NAME}"',
        "Access-Control-Expose-Headers": "Content-Disposition",
    }
    return StreamingResponse(
        delivery,
        media_type="application/zip",
        headers=headers,
        background=BackgroundTask(delivery.cleanup),
    )
