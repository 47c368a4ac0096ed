import math
from typing import Tuple


def round_half_up(value: float) -> int:
    """Round like the browser's Math.round (halves go up), not banker's rounding."""
    return int(math.floor(value + 0.5))


def scale_factor(original_dimension: float, preview_display_dimension: float) -> float:
    """Ratio between the original pixel grid and the rendered preview."""
    if preview_display_dimension <= 0:
        raise ValueError("preview display dimension must be positive")
    return float(original_dimension) / float(preview_display_dimension)


def to_original(preview_value: float, scale: float) -> int:
    return round_half_up(preview_value * scale)


def map_placement(preview_x: float, preview_y: float, preview_size: float, scale: float) -> Tuple[int, int, int]:
    """Map a preview-space placement to original space.

    X, Y and size are scaled independently with the same factor; the size is a
    single scalar used for both watermark dimensions.
    """
    return (
        to_original(preview_x, scale),
        to_original(preview_y, scale),
        to_original(preview_size, scale),
    )
