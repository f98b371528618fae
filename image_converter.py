#!/usr/bin/env python3
"""
RGB565 <-> RGBA conversion for Digimon Color sprites.

Sprite pixels are little-endian 16-bit words, RRRRRGGG GGGBBBBB.
Full green (0x07E0) is the transparency marker unless the caller asks to
keep it as a visible color ("green as alpha" mode, used for BMP output).

Dependencies: Pillow
"""

import os, struct
from PIL import Image

FULL_GREEN = 0x07E0          # r=0, g=63, b=0: transparent pixel
NEAR_GREEN = 0x07C0          # r=0, g=62, b=0: what an opaque full green becomes


def scale_up(v, vmax):
    """v in 0..vmax -> 0..255, round half up."""
    return (v * 510 + vmax) // (2 * vmax)


def scale_down(v, vmax):
    """v in 0..255 -> 0..vmax, round half up."""
    return (v * vmax * 2 + 255) // 510


def decode_pixel(c, use_green_as_alpha=False):
    if not use_green_as_alpha and c == FULL_GREEN:
        return (0, 0, 0, 0)
    r = scale_up((c >> 11) & 0x1F, 31)
    g = scale_up((c >> 5) & 0x3F, 63)
    b = scale_up(c & 0x1F, 31)
    return (r, g, b, 255)


def encode_pixel(r, g, b, a, use_green_as_alpha=False):
    if a == 0:
        return FULL_GREEN
    c = (scale_down(r, 31) << 11) | (scale_down(g, 63) << 5) | scale_down(b, 31)
    if not use_green_as_alpha and c == FULL_GREEN:
        c = NEAR_GREEN
    return c


def rgb565_to_image(pixels: bytes, width: int, height: int, use_green_as_alpha: bool = False) -> Image.Image:
    if pixels is None:
        raise ValueError("pixels is required")
    if width < 0 or height < 0:
        raise ValueError(f"Invalid image size {width}x{height}")
    if len(pixels) != width * height * 2:
        raise ValueError(f"Image size is incorrect: {len(pixels)} bytes for {width}x{height}")

    out = bytearray()
    for c in struct.unpack(f"<{width * height}H", pixels):
        out.extend(decode_pixel(c, use_green_as_alpha))
    return Image.frombytes("RGBA", (width, height), bytes(out))


def image_to_rgb565(img: Image.Image, use_green_as_alpha: bool = False) -> bytes:
    if img is None:
        raise ValueError("img is required")
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    data = img.tobytes()
    words = [encode_pixel(data[i], data[i + 1], data[i + 2], data[i + 3], use_green_as_alpha)
             for i in range(0, len(data), 4)]
    return struct.pack(f"<{len(words)}H", *words)


# ------------------ file helpers ------------------

def load_image(path) -> Image.Image:
    """Read an image file completely and close it."""
    with Image.open(path) as im:
        return im.convert("RGBA")


def save_image(img: Image.Image, path):
    if os.path.splitext(str(path))[1].lower() == ".bmp":
        img = img.convert("RGB")
    img.save(path)
