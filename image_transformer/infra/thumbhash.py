# image_transformer/infra/thumbhash.py
"""
ThumbHash placeholder encoding.

Implements the published ThumbHash encoder (https://evanw.github.io/thumbhash/):
average color, DCT coefficients for the L/P/Q channels plus an optional
alpha channel, and the aspect ratio packed into the header. Input must be
at most 100x100; generate_thumbhash() shrinks larger images first.
"""
from __future__ import annotations

import asyncio
import base64
import math
from functools import partial

from image_transformer.core.domain import RawImage
from image_transformer.core.ports import ImageCodecs
from image_transformer.core.resize_policy import FitMethod

MAX_THUMB_DIMENSION = 50
MAX_ENCODER_DIMENSION = 100


def _round(value: float) -> int:
    """Round half up (the reference encoder's rounding)"""
    return math.floor(value + 0.5)


def _encode_channel(
    channel: list[float], w: int, h: int, nx: int, ny: int
) -> tuple[float, list[float], float]:
    dc = 0.0
    ac: list[float] = []
    scale = 0.0

    for cy in range(ny):
        fy = [math.cos(math.pi / h * cy * (y + 0.5)) for y in range(h)]
        cx = 0
        while cx * ny < nx * (ny - cy):
            fx = [math.cos(math.pi / w * cx * (x + 0.5)) for x in range(w)]
            f = 0.0
            for y in range(h):
                row = y * w
                fy_y = fy[y]
                for x in range(w):
                    f += channel[row + x] * fx[x] * fy_y
            f /= w * h

            if cx or cy:
                ac.append(f)
                scale = max(scale, abs(f))
            else:
                dc = f
            cx += 1

    if scale:
        ac = [0.5 + 0.5 / scale * f for f in ac]
    return dc, ac, scale


def rgba_to_thumbhash(w: int, h: int, rgba: bytes) -> bytes:
    """
    Encode an RGBA image into a ThumbHash.

    Raises:
        ValueError: Image larger than 100x100 or buffer size mismatch
    """
    if w > MAX_ENCODER_DIMENSION or h > MAX_ENCODER_DIMENSION:
        raise ValueError(f"{w}x{h} doesn't fit in {MAX_ENCODER_DIMENSION}x{MAX_ENCODER_DIMENSION}")
    if len(rgba) != w * h * 4:
        raise ValueError(f"RGBA buffer size mismatch for {w}x{h}")

    pixel_count = w * h

    # Average color, weighted by alpha
    avg_r = avg_g = avg_b = avg_a = 0.0
    for j in range(0, pixel_count * 4, 4):
        alpha = rgba[j + 3] / 255
        avg_r += alpha / 255 * rgba[j]
        avg_g += alpha / 255 * rgba[j + 1]
        avg_b += alpha / 255 * rgba[j + 2]
        avg_a += alpha
    if avg_a:
        avg_r /= avg_a
        avg_g /= avg_a
        avg_b /= avg_a

    has_alpha = avg_a < pixel_count
    l_limit = 5 if has_alpha else 7
    lx = max(1, _round(l_limit * w / max(w, h)))
    ly = max(1, _round(l_limit * h / max(w, h)))

    # RGBA -> LPQA, composited over the average color
    l_chan: list[float] = []
    p_chan: list[float] = []
    q_chan: list[float] = []
    a_chan: list[float] = []
    for j in range(0, pixel_count * 4, 4):
        alpha = rgba[j + 3] / 255
        r = avg_r * (1 - alpha) + alpha / 255 * rgba[j]
        g = avg_g * (1 - alpha) + alpha / 255 * rgba[j + 1]
        b = avg_b * (1 - alpha) + alpha / 255 * rgba[j + 2]
        l_chan.append((r + g + b) / 3)
        p_chan.append((r + g) / 2 - b)
        q_chan.append(r - g)
        a_chan.append(alpha)

    l_dc, l_ac, l_scale = _encode_channel(l_chan, w, h, max(3, lx), max(3, ly))
    p_dc, p_ac, p_scale = _encode_channel(p_chan, w, h, 3, 3)
    q_dc, q_ac, q_scale = _encode_channel(q_chan, w, h, 3, 3)
    if has_alpha:
        a_dc, a_ac, a_scale = _encode_channel(a_chan, w, h, 5, 5)

    is_landscape = w > h
    header24 = (
        _round(63 * l_dc)
        | (_round(31.5 + 31.5 * p_dc) << 6)
        | (_round(31.5 + 31.5 * q_dc) << 12)
        | (_round(31 * l_scale) << 18)
        | (int(has_alpha) << 23)
    )
    header16 = (
        (ly if is_landscape else lx)
        | (_round(63 * p_scale) << 3)
        | (_round(63 * q_scale) << 9)
        | (int(is_landscape) << 15)
    )

    hash_bytes = [
        header24 & 255,
        (header24 >> 8) & 255,
        header24 >> 16,
        header16 & 255,
        header16 >> 8,
    ]
    if has_alpha:
        hash_bytes.append(_round(15 * a_dc) | (_round(15 * a_scale) << 4))

    # AC coefficients, two 4-bit values per byte
    ac_start = len(hash_bytes)
    channels = [l_ac, p_ac, q_ac, a_ac] if has_alpha else [l_ac, p_ac, q_ac]
    ac_index = 0
    for ac in channels:
        for f in ac:
            position = ac_start + (ac_index >> 1)
            if position == len(hash_bytes):
                hash_bytes.append(0)
            hash_bytes[position] |= _round(15 * f) << ((ac_index & 1) << 2)
            ac_index += 1

    return bytes(hash_bytes)


async def generate_thumbhash(image: RawImage, codecs: ImageCodecs) -> str:
    """Shrink to at most 50px on the longest side, then base64 ThumbHash"""
    source = image
    if image.width > MAX_THUMB_DIMENSION or image.height > MAX_THUMB_DIMENSION:
        scale = max(image.width, image.height) / MAX_THUMB_DIMENSION
        width = max(1, _round(image.width / scale))
        height = max(1, _round(image.height / scale))
        source = await codecs.resample(image, width, height, FitMethod.STRETCH)

    loop = asyncio.get_running_loop()
    hash_bytes = await loop.run_in_executor(
        None, partial(rgba_to_thumbhash, source.width, source.height, source.data)
    )
    return base64.b64encode(hash_bytes).decode("ascii")
