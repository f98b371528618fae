import struct

import pytest

from firmware_info import FirmwareLayout

BASE = 0x100
SIZE_TABLE = 0x10
FILLER = 0x5A
TAIL = b"\xAA" * 32


def gradient(w, h, seed):
    return [(seed * 977 + k * 31) & 0xFFFF for k in range(w * h)]


def pack_firmware(sprites, base=BASE, size_table_offset=SIZE_TABLE, tail=TAIL):
    """Firmware bytes with sprites stored contiguously in table order."""
    n = len(sprites)
    assert size_table_offset + n * 4 <= base
    buf = bytearray([FILLER]) * base
    buf[0:4] = b"HEAD"
    sizes = [v for w, h, _ in sprites for v in (w, h)]
    struct.pack_into(f"<{n * 2}H", buf, size_table_offset, *sizes)

    data = bytearray()
    offsets = []
    for w, h, words in sprites:
        offsets.append(n * 4 + len(data))
        data += struct.pack(f"<{w * h}H", *words)
    buf += struct.pack(f"<{n}i", *offsets)
    buf += data
    buf += tail
    return bytes(buf)


# sprite 0: misc 4x2, chara 0: 1-4, chara 1: 5-8 (2 frames, cutin, name each)
MISC_WORDS = [0xF800, 0x07E0, 0x001F, 0xFFFF, 0x0000, 0x07C0, 0x8410, 0x1234]


def chara_sprites():
    sprites = [(4, 2, MISC_WORDS)]
    for c in range(2):
        seed = 10 * (c + 1)
        sprites.append((48, 48, gradient(48, 48, seed)))
        sprites.append((48, 48, gradient(48, 48, seed + 1)))
        sprites.append((8, 4, gradient(8, 4, seed + 2)))   # cut-in
        sprites.append((6, 2, gradient(6, 2, seed + 3)))   # name
    return sprites


@pytest.fixture
def chara_layout():
    return FirmwareLayout(sprite_pack_base=BASE, size_table_offset=SIZE_TABLE, num_images=9,
                          num_charas=2, num_frames_per_chara=2, charas_start_index=1,
                          has_cutin=True, has_name=True)


@pytest.fixture
def chara_firmware(tmp_path):
    path = tmp_path / "fw.bin"
    path.write_bytes(pack_firmware(chara_sprites()))
    return path


LAYOUT_ARGV = ["--sprite-pack-base", "0x100", "--size-table-offset", "0x10", "--num-images", "9",
               "--num-charas", "2", "--num-frames", "2", "--chara-start", "1", "--has-cutin", "--has-name"]
