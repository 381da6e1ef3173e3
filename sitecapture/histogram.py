"""Quantized pixel-frequency histogram for rendered screenshots.

The counting routine works on raw interleaved 8-bit pixel buffers and knows
nothing about how they were produced; :func:`decode_png` is the pyvips-backed
adapter that turns screenshot PNG bytes into such a buffer.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Union

import numpy as np
import pyvips

PixelBuffer = Union[bytes, bytearray, memoryview]


@dataclass(slots=True)
class DecodedImage:
    """Interleaved RGBA (or RGB) 8-bit pixels in row-major order.

    ``data`` is any buffer of unsigned bytes; pyvips hands back a cffi buffer,
    which :func:`decode_png` exposes as a byte-format memoryview.
    """

    width: int
    height: int
    bands: int
    data: PixelBuffer


@dataclass(slots=True)
class ColorBucket:
    r: int
    g: int
    b: int
    count: int
    percentage: float

    @property
    def rgb(self) -> str:
        return f"rgb({self.r}, {self.g}, {self.b})"

    def to_payload(self) -> dict[str, object]:
        return {
            "r": self.r,
            "g": self.g,
            "b": self.b,
            "count": self.count,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class PixelHistogram:
    total_pixels: int
    colors: List[ColorBucket]

    def to_payload(self) -> dict[str, object]:
        return {
            "totalPixels": self.total_pixels,
            "colors": [bucket.to_payload() for bucket in self.colors],
        }


def quantize(value, step: int):
    """Floor to a multiple of ``step``; works on ints and numpy arrays alike."""

    return (value // step) * step


def compute_histogram(
    image: DecodedImage,
    *,
    stride: int = 3,
    alpha_threshold: int = 128,
    step: int = 5,
    top_n: int = 20,
) -> PixelHistogram:
    """Count every ``stride``-th pixel into ``step``-sized RGB buckets.

    Pixels with alpha below ``alpha_threshold`` are ignored and do not count
    toward ``total_pixels``. Buckets are ranked by count, ties keep discovery
    order.
    """

    if image.bands not in (3, 4):
        msg = f"expected 3 or 4 bands, got {image.bands}"
        raise ValueError(msg)
    bands = image.bands
    flat = np.frombuffer(image.data, dtype=np.uint8)
    pixel_count = min(flat.size // bands, image.width * image.height)
    pixels = flat[: pixel_count * bands].reshape(-1, bands)[::stride]
    if bands == 4:
        pixels = pixels[pixels[:, 3] >= alpha_threshold]

    sampled = int(pixels.shape[0])
    if not sampled:
        return PixelHistogram(total_pixels=0, colors=[])

    rgb = quantize(pixels[:, :3].astype(np.uint32), step)
    keys = (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
    unique, first_seen, counts = np.unique(keys, return_index=True, return_counts=True)
    # Highest count first; equal counts fall back to first appearance.
    ranked = np.lexsort((first_seen, -counts))[:top_n]

    buckets = []
    for position in ranked:
        key = int(unique[position])
        count = int(counts[position])
        buckets.append(
            ColorBucket(
                r=(key >> 16) & 0xFF,
                g=(key >> 8) & 0xFF,
                b=key & 0xFF,
                count=count,
                percentage=round(count / sampled * 100, 4),
            )
        )
    return PixelHistogram(total_pixels=sampled, colors=buckets)


def decode_png(png_bytes: bytes) -> DecodedImage:
    """Decode screenshot bytes into 8-bit sRGB with an alpha band."""

    image = pyvips.Image.new_from_buffer(png_bytes, "", access="sequential")
    if image.interpretation not in ("srgb", "b-w"):
        image = image.colourspace("srgb")
    if image.bands in (1, 2):
        # Greyscale (with or without alpha): replicate the luminance band.
        grey = image.extract_band(0)
        rgb = grey.bandjoin([grey, grey])
        image = rgb.bandjoin(image.extract_band(1)) if image.bands == 2 else rgb
    if image.bands == 3:
        image = image.bandjoin(255)
    if image.format != "uchar":
        image = image.cast("uchar")
    return DecodedImage(
        width=image.width,
        height=image.height,
        bands=image.bands,
        data=memoryview(image.write_to_memory()).cast("B"),
    )


def analyze_png(
    png_bytes: bytes,
    *,
    stride: int = 3,
    alpha_threshold: int = 128,
    step: int = 5,
    top_n: int = 20,
) -> PixelHistogram:
    decoded = decode_png(png_bytes)
    return compute_histogram(
        decoded,
        stride=stride,
        alpha_threshold=alpha_threshold,
        step=step,
        top_n=top_n,
    )


async def analyze_screenshot(
    png_bytes: bytes,
    *,
    stride: int = 3,
    alpha_threshold: int = 128,
    step: int = 5,
    top_n: int = 20,
) -> PixelHistogram:
    """Decode and histogram off the event loop."""

    return await asyncio.to_thread(
        analyze_png,
        png_bytes,
        stride=stride,
        alpha_threshold=alpha_threshold,
        step=step,
        top_n=top_n,
    )
