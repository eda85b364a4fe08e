# image_transformer/core/resize_policy.py
"""
Crop-vs-stretch decision for resampling.

When the target box has (almost) the source aspect ratio a plain stretch
is visually the same as a crop and cheaper. When the ratios diverge the
source is center-cropped to the target aspect before scaling.
"""
from __future__ import annotations

import math
from enum import Enum

from image_transformer.core.dimensions import Dimensions

# Relative aspect difference treated as "same shape"
ASPECT_TOLERANCE = 0.01


class FitMethod(str, Enum):
    STRETCH = "stretch"
    CROP_TO_FILL = "crop_to_fill"


def _aspect(width: float, height: float) -> float:
    if height == 0:
        return math.inf
    return width / height


def should_crop_to_fill(source: Dimensions, target_width: int, target_height: int) -> bool:
    source_aspect = _aspect(source.width, source.height)
    target_aspect = _aspect(target_width, target_height)

    if not math.isfinite(source_aspect) or not math.isfinite(target_aspect) or source_aspect == 0:
        return False

    relative_diff = abs(source_aspect - target_aspect) / source_aspect
    if relative_diff <= ASPECT_TOLERANCE:
        return False

    if target_aspect > source_aspect:
        crop_height = source.width / target_aspect
        return crop_height >= 1

    crop_width = source.height * target_aspect
    return crop_width >= 1


def choose_fit_method(source: Dimensions, target: Dimensions) -> FitMethod:
    if should_crop_to_fill(source, target.width, target.height):
        return FitMethod.CROP_TO_FILL
    return FitMethod.STRETCH


def is_noop_resize(source: Dimensions, target: Dimensions) -> bool:
    """Target equals source: resampling is skipped entirely"""
    return source.width == target.width and source.height == target.height
