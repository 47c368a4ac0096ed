import asyncio
import os
import threading
import zipfile
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from core.config import ARCHIVE_CHUNK_SIZE, ZIP_COMPRESSLEVEL, logger
from core.errors import ArchiveError


def build_archive(paths: Iterable, archive_path, compresslevel: int = ZIP_COMPRESSLEVEL) -> Path:
    """Zip ``paths`` flat (base names only) into ``archive_path``.

    Returns once the archive is closed and its central directory written; a
    half-written archive is removed and reported as ArchiveError.
    """
    archive_path = Path(archive_path)
    try:
        with zipfile.ZipFile(archive_path, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel) as zf:
            for p in paths:
                p = Path(p)
                zf.write(p, arcname=p.name)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as ex:
        logger.error("archive creation failed for %s: %s", archive_path.name, ex)
        cleanup_files([archive_path])
        raise ArchiveError(f"Failed to create archive: {ex}") from ex
    return archive_path


async def build_archive_async(paths: Iterable, archive_path, compresslevel: int = ZIP_COMPRESSLEVEL) -> Path:
    """Awaitable that resolves only when the archive is finalized on disk."""
    return await asyncio.to_thread(build_archive, list(paths), archive_path, compresslevel)


def cleanup_files(paths: Iterable) -> None:
    """Best-effort delete; problems are logged, never raised."""
    for p in paths:
        try:
            os.remove(p)
        except FileNotFoundError:
            logger.warning("cleanup: %s already removed", os.path.basename(str(p)))
        except OSError as ex:
            logger.warning("cleanup: could not remove %s: %s", os.path.basename(str(p)), ex)


def clean_output_dir(output_dir) -> None:
    """Remove every file in the shared output directory (job failure path)."""
    try:
        entries = list(os.scandir(output_dir))
    except OSError as ex:
        logger.warning("cleanup: could not read output directory %s: %s", output_dir, ex)
        return
    cleanup_files(e.path for e in entries if e.is_file(follow_symlinks=False))


class ArchiveDelivery:
    """Chunk iterator over a finished archive that cleans the job up exactly once.

    Cleanup runs when the stream is exhausted, when the client goes away and
    the iterator is closed, or when reading fails part-way.
    """

    def __init__(self, archive_path, artifacts: List, chunk_size: int = ARCHIVE_CHUNK_SIZE,
                 on_cleanup: Optional[Callable[[List], None]] = None):
        self.archive_path = Path(archive_path)
        # archive first so a half-sent zip never outlives the images
        self.artifacts = [self.archive_path] + [Path(a) for a in artifacts]
        self.chunk_size = max(1, int(chunk_size))
        self._on_cleanup = on_cleanup or cleanup_files
        self._lock = threading.Lock()
        self._cleaned = False
        self.completed = False

    def cleanup(self) -> None:
        with self._lock:
            if self._cleaned:
                return
            self._cleaned = True
        self._on_cleanup(self.artifacts)

    def __iter__(self) -> Iterator[bytes]:
        try:
            with open(self.archive_path, "rb") as fh:
                for chunk in iter(lambda: fh.read(self.chunk_size), b""):
                    yield chunk
            self.completed = True
        except OSError as ex:
            logger.error("Error sending zip %s: %s", self.archive_path.name, ex)
        finally:
            if not self.completed:
                logger.warning("archive delivery of %s did not complete", self.archive_path.name)
            self.cleanup()
