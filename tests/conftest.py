import io
import os
import tempfile
from pathlib import Path

import pytest
from PIL import Image

# Keep the import-time directory creation out of the working tree
_SCRATCH = tempfile.mkdtemp(prefix="batchmark-tests-")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_SCRATCH, "uploads"))
os.environ.setdefault("OUTPUT_DIR", os.path.join(_SCRATCH, "output"))


def make_image(path, size=(64, 48), color=(255, 255, 255), mode="RGB", fmt=None, **save_kwargs) -> Path:
    path = Path(path)
    Image.new(mode, size, color).save(path, format=fmt, **save_kwargs)
    return path


def image_bytes(size=(32, 32), color=(0, 128, 255), fmt="PNG", mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def dirs(tmp_path, monkeypatch):
    upload_dir = tmp_path / "uploads"
    output_dir = tmp_path / "output"
    upload_dir.mkdir()
    output_dir.mkdir()

    import routers.process as process_router
    import routers.upload as upload_router

    monkeypatch.setattr(upload_router, "UPLOAD_DIR", upload_dir)
    monkeypatch.setattr(process_router, "UPLOAD_DIR", upload_dir)
    monkeypatch.setattr(process_router, "OUTPUT_DIR", output_dir)
    return upload_dir, output_dir


@pytest.fixture
def client(dirs):
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def logo(dirs):
    upload_dir, _ = dirs
    return make_image(upload_dir / "logo.png", size=(200, 200), color=(255, 0, 0, 255), mode="RGBA")
