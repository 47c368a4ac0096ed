import asyncio
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from core.config import logger
from core.errors import BatchExhaustionError, PerImageError
from models.job import ImageRef, ProcessedResult, ProcessingJob
from utils.watermark import apply_watermark_file


def output_path_for(output_dir: Path, image: ImageRef) -> Path:
    return Path(output_dir) / f"watermarked-{image.stored_name}"


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as ex:
        logger.warning("could not remove partial output %s: %s", path.name, ex)


def process_one(job: ProcessingJob, image: ImageRef, upload_dir: Path, output_dir: Path) -> Optional[ProcessedResult]:
    """Watermark a single image. Any failure is logged and turned into None."""
    out_path = output_path_for(output_dir, image)
    try:
        try:
            placement = job.settings_for(image.filename)
        except (ValueError, ValidationError) as ex:
            raise PerImageError(image.filename, f"invalid settings: {ex}") from ex
        try:
            apply_watermark_file(
                image.stored_path(upload_dir),
                job.watermark.stored_path(upload_dir),
                placement,
                out_path,
            )
        except (OSError, ValueError, SyntaxError) as ex:
            # PIL reports some truncated/corrupt files as SyntaxError
            raise PerImageError(image.filename, str(ex) or ex.__class__.__name__) from ex
    except PerImageError as ex:
        logger.error("Error processing image %s", ex)
        _remove_partial(out_path)
        return None
    except Exception as ex:
        logger.exception("Unexpected error processing image %s: %s", image.filename, ex)
        _remove_partial(out_path)
        return None
    return ProcessedResult(source_filename=image.filename, output_path=out_path)


async def run_batch(
    job: ProcessingJob,
    upload_dir: Path,
    output_dir: Path,
    max_concurrency: int = 0,
) -> List[ProcessedResult]:
    """Process every image of ``job`` concurrently and return the survivors.

    All units settle before this returns. Raises BatchExhaustionError when none
    of them succeeded.
    """
    sem = asyncio.Semaphore(max_concurrency) if max_concurrency and max_concurrency > 0 else None

    async def _unit(image: ImageRef) -> Optional[ProcessedResult]:
        if sem is None:
            return await asyncio.to_thread(process_one, job, image, upload_dir, output_dir)
        async with sem:
            return await asyncio.to_thread(process_one, job, image, upload_dir, output_dir)

    results = await asyncio.gather(*[_unit(img) for img in job.images], return_exceptions=True)

    survivors: List[ProcessedResult] = []
    for image, res in zip(job.images, results):
        if isinstance(res, BaseException):
            logger.error("Error processing image %s: %s", image.filename, res)
            continue
        if res is not None:
            survivors.append(res)

    logger.info("batch finished: %d/%d images processed", len(survivors), len(job.images))
    if not survivors:
        raise BatchExhaustionError("No images were successfully processed")
    return survivors
