from typing import Any, Dict, Tuple
from pathlib import Path
from PIL import Image
from PIL.PngImagePlugin import PngInfo
import numpy as np

from core.config import logger
from models.job import ImageInfo, PlacementSettings

# Formats that can carry an alpha channel on output
_ALPHA_FORMATS = {"PNG", "WEBP", "TIFF", "GIF"}
# Formats whose encoder accepts exif= / icc_profile=
_EXIF_FORMATS = {"JPEG", "PNG", "WEBP"}
_ICC_FORMATS = {"JPEG", "PNG", "WEBP", "TIFF"}
_DPI_FORMATS = {"JPEG", "PNG", "TIFF"}
# Camera JPEGs with embedded previews open as MPO but are JPEG on disk
_FORMAT_ALIASES = {"MPO": "JPEG"}
# 16-bit grayscale (PNG/TIFF); reduced to 8-bit L before compositing
_HIGH_DEPTH_GRAY = {"I;16", "I;16L", "I;16B", "I;16N", "I"}


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA", "RGBa", "La") or "transparency" in img.info


def read_image_info(img: Image.Image) -> ImageInfo:
    """Capture format, geometry and embedded metadata of a freshly opened image."""
    fmt = (img.format or "").upper()
    if not fmt:
        raise ValueError("unrecognised image format")
    fmt = _FORMAT_ALIASES.get(fmt, fmt)
    text: Dict[str, str] = {}
    for k, v in (getattr(img, "text", None) or {}).items():
        if isinstance(k, str) and isinstance(v, str):
            text[k] = str(v)
    dpi = img.info.get("dpi")
    return ImageInfo(
        format=fmt,
        width=int(img.width),
        height=int(img.height),
        mode=img.mode,
        exif=img.info.get("exif") or None,
        icc_profile=img.info.get("icc_profile") or None,
        dpi=tuple(dpi) if dpi else None,
        text=text,
        has_alpha=_has_alpha(img),
    )


def scale_alpha(img: Image.Image, alpha: int) -> Image.Image:
    """dest-in against a uniform (255, 255, 255, alpha) tile.

    Color is kept, every pixel's alpha becomes ``a * alpha / 255`` (rounded).
    """
    alpha = max(0, min(255, int(alpha)))
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    if alpha != 255:
        a = arr[:, :, 3].astype(np.uint16)
        arr[:, :, 3] = ((a * alpha + 127) // 255).astype(np.uint8)
    return Image.fromarray(arr)


def build_watermark(path, size: int, alpha: int) -> Image.Image:
    """Load the watermark, force alpha, resize to a size x size square and apply opacity.

    The square resize ignores the logo's own aspect ratio; the size the user
    picked is used for both dimensions.
    """
    size = int(size)
    if size <= 0:
        raise ValueError(f"watermark size must be positive, got {size}")
    limit = Image.MAX_IMAGE_PIXELS
    if limit and size * size > limit:
        raise ValueError(f"watermark size {size}px exceeds the {limit} pixel limit")
    with Image.open(path) as src:
        wm = src.convert("RGBA")
    if wm.size != (size, size):
        wm = wm.resize((size, size), Image.LANCZOS)
    return scale_alpha(wm, alpha)


def to_8bit_gray(img: Image.Image) -> Image.Image:
    """Keep the top byte of 16-bit samples; Pillow's own convert clips them at 255."""
    arr = np.clip(np.asarray(img, dtype=np.int64), 0, 65535) >> 8
    return Image.fromarray(arr.astype(np.uint8))


def apply_watermark(base: Image.Image, watermark: Image.Image, x: int, y: int) -> Image.Image:
    """Composite ``watermark`` onto ``base`` anchored at its top-left (x, y).

    Whatever falls outside the base is clipped.
    """
    if base.mode in _HIGH_DEPTH_GRAY:
        base = to_8bit_gray(base)
    out = base.convert("RGBA")
    out.alpha_composite(watermark.convert("RGBA"), dest=(int(x), int(y)))
    return out


def _restore_mode(img: Image.Image, info: ImageInfo) -> Image.Image:
    if info.has_alpha and info.format in _ALPHA_FORMATS:
        return img
    rgb = img.convert("RGB")
    if info.mode in _HIGH_DEPTH_GRAY:
        return rgb.convert("L")
    if info.mode in ("L", "CMYK"):
        return rgb.convert(info.mode)
    return rgb


def save_kwargs(info: ImageInfo) -> Dict[str, Any]:
    """Encoder options for re-encoding in the source's own format at full fidelity."""
    fmt = info.format
    kwargs: Dict[str, Any] = {}
    if fmt == "JPEG":
        kwargs["quality"] = 100
    elif fmt == "PNG":
        kwargs["compress_level"] = 0
        if info.text:
            pnginfo = PngInfo()
            for k, v in info.text.items():
                pnginfo.add_text(k, v)
            kwargs["pnginfo"] = pnginfo
    elif fmt == "WEBP":
        kwargs["quality"] = 100
    if info.exif and fmt in _EXIF_FORMATS:
        kwargs["exif"] = info.exif
    if info.icc_profile and fmt in _ICC_FORMATS:
        kwargs["icc_profile"] = info.icc_profile
    if info.dpi and fmt in _DPI_FORMATS:
        kwargs["dpi"] = info.dpi
    return kwargs


def write_like_source(img: Image.Image, info: ImageInfo, output_path) -> Path:
    output_path = Path(output_path)
    out = _restore_mode(img, info)
    out.save(output_path, format=info.format, **save_kwargs(info))
    return output_path


def apply_watermark_file(src_path, watermark_path, placement: PlacementSettings, output_path) -> Tuple[Path, ImageInfo]:
    """Watermark one image on disk and write the result in its original format.

    The watermark raster is built for this image only, since its size depends
    on the placement (and, for preview-space settings, on the image width).
    """
    with Image.open(src_path) as img:
        info = read_image_info(img)
        x, y, size = placement.resolve(info.width)
        watermark = build_watermark(watermark_path, size, placement.alpha)
        composed = apply_watermark(img, watermark, x, y)
    output_path = write_like_source(composed, info, output_path)
    logger.debug("wrote %s (%s %dx%d, wm %dpx at %d,%d)", output_path.name, info.format, info.width, info.height, size, x, y)
    return output_path, info
