import math
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.errors import JobValidationError
from utils.coordinates import map_placement, round_half_up, scale_factor


class ImageRef(BaseModel):
    """An uploaded file as returned by the ingest endpoints."""

    filename: str = Field(min_length=1)
    path: Optional[str] = None

    @property
    def stored_name(self) -> str:
        # Never let a client-supplied name escape the upload root
        return Path(self.filename).name

    def stored_path(self, root: Path) -> Path:
        return Path(root) / self.stored_name


class PlacementSettings(BaseModel):
    """Where and how big the watermark goes on one image, in original pixels.

    The browser normally sends ``scaledX/scaledY/scaledSize`` already mapped to
    the original grid. It may instead send the raw preview values together
    with the width the preview was rendered at, and the mapping is done here.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    scaled_x: Optional[int] = Field(default=None, alias="scaledX", ge=0)
    scaled_y: Optional[int] = Field(default=None, alias="scaledY", ge=0)
    scaled_size: Optional[int] = Field(default=None, alias="scaledSize", ge=0)
    opacity: float = Field(ge=0.0, le=1.0)

    preview_x: Optional[float] = Field(default=None, alias="previewX", ge=0)
    preview_y: Optional[float] = Field(default=None, alias="previewY", ge=0)
    preview_size: Optional[float] = Field(default=None, alias="previewSize", ge=0)
    preview_display_width: Optional[float] = Field(default=None, alias="previewDisplayWidth", gt=0)

    @field_validator("scaled_x", "scaled_y", "scaled_size", mode="before")
    @classmethod
    def _round_pixels(cls, v):
        if v is None:
            return v
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("pixel values must be numbers")
        if not math.isfinite(v):
            raise ValueError("pixel values must be finite")
        return round_half_up(float(v))

    @property
    def has_scaled(self) -> bool:
        return None not in (self.scaled_x, self.scaled_y, self.scaled_size)

    @property
    def has_preview(self) -> bool:
        return None not in (self.preview_x, self.preview_y, self.preview_size, self.preview_display_width)

    def resolve(self, original_width: int) -> Tuple[int, int, int]:
        """Return ``(x, y, size)`` in original pixels, mapping preview values if needed."""
        if self.has_scaled:
            x, y, size = self.scaled_x, self.scaled_y, self.scaled_size
        elif self.has_preview:
            scale = scale_factor(original_width, self.preview_display_width)
            x, y, size = map_placement(self.preview_x, self.preview_y, self.preview_size, scale)
        else:
            raise ValueError("placement is incomplete")
        if size <= 0:
            raise ValueError(f"watermark size must be positive, got {size}")
        return x, y, size

    @property
    def alpha(self) -> int:
        return round_half_up(self.opacity * 255)


@dataclass(frozen=True)
class ProcessingJob:
    images: List[ImageRef]
    watermark: ImageRef
    # filename -> raw settings dict; each entry is validated when its image runs
    settings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_payload(cls, payload: Any) -> "ProcessingJob":
        if not isinstance(payload, dict):
            raise JobValidationError("Missing required data")
        images = payload.get("images")
        watermark = payload.get("watermark")
        settings = payload.get("settings")
        if not images or not watermark or not settings:
            raise JobValidationError("Missing required data")
        if not isinstance(images, list) or not isinstance(settings, dict):
            raise JobValidationError("Malformed request data")
        try:
            refs = [ImageRef.model_validate(i) for i in images]
            wm = ImageRef.model_validate(watermark)
        except ValidationError as ex:
            raise JobValidationError(f"Malformed image reference: {ex.error_count()} error(s)") from ex
        return cls(images=refs, watermark=wm, settings=MappingProxyType(dict(settings)))

    def settings_for(self, filename: str) -> PlacementSettings:
        raw = self.settings.get(filename)
        if raw is None:
            raise ValueError("no settings for image")
        return PlacementSettings.model_validate(raw)


@dataclass(frozen=True)
class ImageInfo:
    """What an image looked like on disk before it was touched."""

    format: str
    width: int
    height: int
    mode: str
    exif: Optional[bytes] = None
    icc_profile: Optional[bytes] = None
    dpi: Optional[Tuple[float, float]] = None
    text: Dict[str, str] = field(default_factory=dict)
    has_alpha: bool = False


@dataclass(frozen=True)
class ProcessedResult:
    source_filename: str
    output_path: Path
