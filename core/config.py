import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass

# Storage
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads")).resolve()
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "output")).resolve()

MAX_FILES = int(os.getenv("MAX_FILES", "100"))

# Batch: 0 lets every image of a job run at once
BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", "0") or "0")

# Archive
ARCHIVE_NAME = "watermarked-images.zip"
ZIP_COMPRESSLEVEL = max(0, min(9, int(os.getenv("ZIP_COMPRESSLEVEL", "6") or "6")))
ARCHIVE_CHUNK_SIZE = int(os.getenv("ARCHIVE_CHUNK_SIZE", "65536") or "65536")

# CORS
_default_origins = ",".join([
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
])
ALLOWED_ORIGINS = [o.strip() for o in (os.getenv("ALLOWED_ORIGINS") or _default_origins).split(",") if o.strip()]

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("batchmark")

for _d in (UPLOAD_DIR, OUTPUT_DIR):
    _d.mkdir(parents=True, exist_ok=True)
