# image_transformer/core/dimensions.py
"""
Target dimension resolution.

Turns a partial client request (width, height, both or neither) into
concrete pixel dimensions. A single axis keeps the source aspect ratio;
two axes are used verbatim.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from image_transformer.core.errors import InvalidDimensionsError


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class DimensionRequest:
    """Client intent; either axis may be missing"""
    width: float | None = None
    height: float | None = None


def _is_valid(value: float | None) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def round_dimension(value: float) -> int:
    """Round half away from zero (inputs are positive), never below 1"""
    rounded = math.floor(value + 0.5)
    return max(1, rounded)


def parse_dimension_param(value: str | None) -> float | None:
    """
    Lenient query-string parsing: empty, non-numeric, non-finite or
    non-positive values are treated as absent.
    """
    if value is None or value.strip() == "":
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    if not math.isfinite(parsed) or parsed <= 0:
        return None
    return parsed


def resolve_dimensions(original: Dimensions, request: DimensionRequest) -> Dimensions:
    """
    Compute target dimensions from the source size and a partial request.

    Raises:
        InvalidDimensionsError: If neither axis is a positive finite number
    """
    has_width = _is_valid(request.width)
    has_height = _is_valid(request.height)

    if not has_width and not has_height:
        raise InvalidDimensionsError("Either width or height must be provided and greater than zero")

    if has_width and has_height:
        return Dimensions(
            width=round_dimension(request.width),
            height=round_dimension(request.height),
        )

    aspect = original.width / original.height

    if has_width:
        return Dimensions(
            width=round_dimension(request.width),
            height=round_dimension(request.width / aspect),
        )

    return Dimensions(
        width=round_dimension(request.height * aspect),
        height=round_dimension(request.height),
    )
