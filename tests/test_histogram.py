from __future__ import annotations

import pytest
import pyvips

from sitecapture.histogram import DecodedImage, analyze_png, analyze_screenshot, compute_histogram, decode_png, quantize


def _rgba(pixels: list[tuple[int, int, int, int]], width: int | None = None) -> DecodedImage:
    width = width or len(pixels)
    height = len(pixels) // width
    data = bytes(channel for pixel in pixels for channel in pixel)
    return DecodedImage(width=width, height=height, bands=4, data=data)


def _png(width: int, height: int, rgb: tuple[int, int, int], alpha: int | None = None) -> bytes:
    image = pyvips.Image.black(width, height, bands=3) + list(rgb)
    if alpha is not None:
        image = image.bandjoin(alpha)
    image = image.cast("uchar").copy(interpretation="srgb")
    return image.pngsave_buffer()


def test_quantize_floors_to_step():
    assert quantize(0, 5) == 0
    assert quantize(12, 5) == 10
    assert quantize(254, 5) == 250
    assert quantize(255, 5) == 255


def test_solid_color_yields_single_bucket_at_full_share():
    image = _rgba([(12, 34, 56, 255)] * 100, width=10)

    histogram = compute_histogram(image)

    assert histogram.total_pixels == 34
    assert len(histogram.colors) == 1
    bucket = histogram.colors[0]
    assert (bucket.r, bucket.g, bucket.b) == (10, 30, 55)
    assert bucket.count == 34
    assert bucket.percentage == pytest.approx(100.0)
    assert bucket.rgb == "rgb(10, 30, 55)"


def test_fully_transparent_image_has_no_buckets():
    image = _rgba([(255, 0, 0, 0)] * 30)

    histogram = compute_histogram(image)

    assert histogram.total_pixels == 0
    assert histogram.colors == []
    assert histogram.to_payload() == {"totalPixels": 0, "colors": []}


def test_alpha_threshold_is_inclusive_and_excluded_pixels_do_not_count():
    pixels = [(0, 0, 0, 127), (200, 200, 200, 128)]
    histogram = compute_histogram(_rgba(pixels), stride=1)

    assert histogram.total_pixels == 1
    assert [(b.r, b.g, b.b) for b in histogram.colors] == [(200, 200, 200)]
    assert histogram.colors[0].percentage == pytest.approx(100.0)


def test_stride_samples_every_nth_pixel():
    green = (0, 255, 0, 255)
    pixels = [(255, 0, 0, 255), green, green, (0, 0, 255, 255), green, green]

    histogram = compute_histogram(_rgba(pixels), stride=3)

    colors = {(b.r, b.g, b.b): b.count for b in histogram.colors}
    assert colors == {(255, 0, 0): 1, (0, 0, 255): 1}
    assert histogram.total_pixels == 2


def test_buckets_rank_by_count_with_ties_in_discovery_order_and_truncate():
    pixels = (
        [(100, 100, 100, 255)]
        + [(50, 50, 50, 255)] * 3
        + [(0, 0, 0, 255)]
        + [(20, 20, 20, 255)]
    )

    histogram = compute_histogram(_rgba(pixels), stride=1, top_n=3)

    assert [(b.r, b.count) for b in histogram.colors] == [(50, 3), (100, 1), (0, 1)]
    assert histogram.total_pixels == 6
    shares = [b.percentage for b in histogram.colors]
    assert shares[0] == pytest.approx(50.0)
    assert all(0 < share <= 100 for share in shares)


def test_rgb_buffers_are_accepted_without_alpha():
    data = bytes([9, 9, 9] * 4)
    histogram = compute_histogram(DecodedImage(width=2, height=2, bands=3, data=data), stride=1)

    assert histogram.total_pixels == 4
    assert histogram.colors[0].to_payload() == {"r": 5, "g": 5, "b": 5, "count": 4, "percentage": 100.0}


def test_unsupported_band_count_raises():
    with pytest.raises(ValueError):
        compute_histogram(DecodedImage(width=1, height=1, bands=2, data=b"\x00\x00"))


def test_decode_png_adds_opaque_alpha_band():
    decoded = decode_png(_png(4, 3, (40, 80, 120)))

    assert (decoded.width, decoded.height, decoded.bands) == (4, 3, 4)
    assert len(decoded.data) == 4 * 3 * 4
    assert tuple(decoded.data[:4]) == (40, 80, 120, 255)


def test_analyze_png_on_solid_screenshot():
    histogram = analyze_png(_png(9, 1, (255, 255, 255)))

    assert histogram.total_pixels == 3
    assert histogram.colors[0].to_payload()["r"] == 255
    assert histogram.colors[0].percentage == pytest.approx(100.0)


def test_analyze_png_skips_transparent_screenshot():
    histogram = analyze_png(_png(6, 6, (10, 10, 10), alpha=0))

    assert histogram.total_pixels == 0
    assert histogram.colors == []


@pytest.mark.asyncio
async def test_analyze_screenshot_runs_off_loop():
    histogram = await analyze_screenshot(_png(3, 3, (0, 0, 0)), stride=1)

    assert histogram.total_pixels == 9
    assert len(histogram.colors) == 1


@pytest.mark.asyncio
async def test_analyze_screenshot_rejects_non_image_bytes():
    with pytest.raises(pyvips.Error):
        await analyze_screenshot(b"definitely not a png")


def test_decoded_pixels_index_as_integers():
    decoded = decode_png(_png(2, 2, (10, 20, 30), alpha=200))

    assert isinstance(decoded.data[3], int)
    assert decoded.data[3] == 200

    histogram = compute_histogram(decoded, stride=1)
    assert histogram.total_pixels == 4
    assert (histogram.colors[0].r, histogram.colors[0].g, histogram.colors[0].b) == (10, 20, 30)


@pytest.mark.asyncio
async def test_capture_sized_screenshot_histogram():
    png = (
        (pyvips.Image.black(1920, 1200, bands=3) + [255, 255, 255])
        .insert(pyvips.Image.black(1920, 400, bands=3) + [18, 52, 86], 0, 0)
        .cast("uchar")
        .copy(interpretation="srgb")
        .pngsave_buffer()
    )

    histogram = await analyze_screenshot(png)

    assert histogram.total_pixels == 1920 * 1200 // 3
    assert [(b.r, b.g, b.b) for b in histogram.colors] == [(255, 255, 255), (15, 50, 85)]
    assert histogram.colors[0].percentage == pytest.approx(100 * 2 / 3, rel=1e-3)
    assert sum(b.count for b in histogram.colors) == histogram.total_pixels


def test_memoryview_and_bytearray_buffers_match_bytes():
    pixels = [(0, 0, 0, 255), (250, 250, 250, 255), (250, 250, 250, 255)]
    raw = bytes(channel for pixel in pixels for channel in pixel)

    results = [
        compute_histogram(DecodedImage(width=3, height=1, bands=4, data=buffer), stride=1).to_payload()
        for buffer in (raw, bytearray(raw), memoryview(raw))
    ]

    assert results[0] == results[1] == results[2]
    assert results[0]["colors"][0]["count"] == 2
