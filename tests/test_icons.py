from card_icons import (
    animation_interval,
    decode_color,
    decode_icon_frame,
    decode_icon_frames,
    decode_palette,
    display_palette,
    icon_frame_count,
    icon_to_rgba,
    scale_5bit,
)
from tests.conftest import make_block


def test_scale_5bit():
    assert scale_5bit(0) == 0
    assert scale_5bit(31) == 255
    assert scale_5bit(16) == 132


def test_decode_color():
    assert decode_color(0x8000) == (0, 0, 0, 255)
    assert decode_color(0x001F) == (255, 0, 0, 0)
    assert decode_color(0x03E0) == (0, 255, 0, 0)
    assert decode_color(0x7C00) == (0, 0, 255, 0)


def test_background_is_transparent():
    block = bytearray(make_block())
    block[96:98] = (0x8000).to_bytes(2, "little")
    block[98:100] = (0x8000).to_bytes(2, "little")

    raw = decode_palette(block)
    palette = display_palette(raw)

    assert raw[0] == (0, 0, 0, 255)
    assert palette[0] == (0, 0, 0, 0)
    assert palette[1] == (0, 0, 0, 255)
    # Opaque even without the flag bit.
    assert palette[2] == (255, 0, 0, 255)
    assert palette[3] == (0, 0, 0, 255)


def test_icon_frame_count():
    assert icon_frame_count(make_block(frames=1)) == 1
    assert icon_frame_count(make_block(frames=3)) == 3
    assert icon_frame_count(make_block(frames=0)) == 0


def test_decode_icon_frame_nibble_order():
    block = bytearray(make_block())
    block[128] = 0xBA
    block[128 + 127] = 0x0F

    pixels = decode_icon_frame(block, 0)

    assert len(pixels) == 256
    assert pixels[0] == 0xA
    assert pixels[1] == 0xB
    assert pixels[-2:] == [0xF, 0x0]


def test_decode_icon_frames_is_capped():
    assert len(decode_icon_frames(make_block(), 5)) == 3
    assert decode_icon_frames(make_block(), 0) == []


def test_icon_to_rgba():
    palette = display_palette(decode_palette(make_block()))
    data = icon_to_rgba([0, 1] + [2] * 254, palette)

    assert len(data) == 1024
    assert data[0:4] == bytes((0, 0, 0, 0))
    assert data[4:8] == bytes((255, 255, 255, 255))
    assert data[8:12] == bytes((255, 0, 0, 255))


def test_animation_interval():
    assert animation_interval(3) == 440
    assert animation_interval(2) == 640
