# -*- coding: utf8 -*-
# MIT License
#
# Copyright (c) 2023-2024 Ravener
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
"""
Icon and palette decoding.

The first data block of a save stores a 16 entry CLUT at offset 0x60 and up
to three 16x16 4bpp icon frames starting at offset 0x80.
"""
PALETTE_OFFSET = 0x60
PALETTE_SIZE = 16
ICON_OFFSET = 0x80
ICON_SIZE = 16  # 16x16 pixels
ICON_FRAME_SIZE = 128  # 4 bits per pixel
MAX_ICON_FRAMES = 3
ICON_REGION_SIZE = ICON_OFFSET + MAX_ICON_FRAMES * ICON_FRAME_SIZE - PALETTE_OFFSET

# Icon display flag at byte 2 of the first data block.
ICON_FRAME_COUNTS = {0x11: 1, 0x12: 2, 0x13: 3}

TRANSPARENT = (0, 0, 0, 0)


def icon_frame_count(block: bytes) -> int:
    return ICON_FRAME_COUNTS.get(block[2], 0)


def scale_5bit(value: int) -> int:
    """Expands a 5-bit color channel to 8 bits."""
    return (value << 3) | (value >> 2)


def decode_color(value: int) -> tuple:
    r = scale_5bit(value & 0x1F)
    g = scale_5bit((value >> 5) & 0x1F)
    b = scale_5bit((value >> 10) & 0x1F)
    a = 255 if value & 0x8000 else 0
    return (r, g, b, a)


def decode_palette(block: bytes) -> list[tuple]:
    """Returns the raw 16 entry RGBA palette of a data block."""
    palette = []

    for i in range(PALETTE_SIZE):
        offset = PALETTE_OFFSET + i * 2
        palette.append(decode_color(int.from_bytes(block[offset : offset + 2], "little")))

    return palette


def display_palette(palette: list[tuple]) -> list[tuple]:
    """
    Returns the palette as it should be drawn.

    Index 0 is the background and always transparent, every other color is
    fully opaque.
    """
    return [(r, g, b, 0 if i == 0 else 255) for i, (r, g, b, _) in enumerate(palette)]


def decode_icon_frame(block: bytes, frame: int) -> list[int]:
    """Returns the 256 palette indexes of one icon frame, row by row."""
    start = ICON_OFFSET + frame * ICON_FRAME_SIZE
    pixels = []

    for byte in block[start : start + ICON_FRAME_SIZE]:
        # Low nibble is the left pixel.
        pixels.append(byte & 0xF)
        pixels.append(byte >> 4)

    return pixels


def decode_icon_frames(block: bytes, count: int = MAX_ICON_FRAMES) -> list[list[int]]:
    return [decode_icon_frame(block, i) for i in range(min(count, MAX_ICON_FRAMES))]


def icon_to_rgba(pixels: list[int], palette: list[tuple]) -> bytearray:
    """Expands a frame of palette indexes to packed RGBA bytes (16 * 16 * 4)."""
    image_data = bytearray(ICON_SIZE * ICON_SIZE * 4)

    for i, index in enumerate(pixels):
        image_data[i * 4 : i * 4 + 4] = bytes(palette[index])

    return image_data


def animation_interval(frame_count: int) -> int:
    """Milliseconds between icon frames, based on PAL timing."""
    pal_frame_rate = 25
    pal_frames = 11 if frame_count == 3 else 16
    return pal_frames * 1000 // pal_frame_rate
