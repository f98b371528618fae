#!/usr/bin/env python3
"""
Firmware layouts for Digimon Color / Pendulum Color sprite packs.

A layout tells the sprite tools where the two sprite tables live inside a
full flash dump and how the character sprites are grouped:

- size table   : num_images x (u16 width, u16 height), LE, at size_table_offset
- offset table : num_images x s32 offset, LE, at sprite_pack_base
- pixel data   : width*height RGB565 LE words at sprite_pack_base + offset

Character sprites start at charas_start_index. Each character owns a run of
frames (num_frames_per_chara), optionally followed by a cut-in and a name
sprite. Jogress characters own one extra leading slot each. "Special"
characters may have more frames than the rest.

Run directly to print a preset or a custom layout:
    python firmware_info.py --preset dmc5
    python firmware_info.py --list
"""

import argparse, dataclasses, enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple


class InvalidArgument(ValueError):
    """Bad path, index, count or sheet geometry."""


class FrameKind(enum.Enum):
    CHARACTER_SPRITE = "sprite"
    CUTIN = "cutin"
    NAME = "name"


@dataclass(frozen=True)
class FirmwareLayout:
    sprite_pack_base: int
    size_table_offset: int
    num_images: int
    num_charas: int
    num_frames_per_chara: int
    charas_start_index: int
    num_jogress_charas: int = 0
    chara_sprite_width: int = 48
    chara_sprite_height: int = 48
    has_name: bool = False
    has_cutin: bool = False
    omit_special_cutin: bool = False
    num_frames_per_special_chara: int = 0
    special_chara_indexes: Tuple[int, ...] = field(default_factory=tuple)
    name_start: Optional[int] = None

    def __post_init__(self):
        for name in ("sprite_pack_base", "size_table_offset", "num_images", "num_charas",
                     "num_frames_per_chara", "charas_start_index", "num_jogress_charas",
                     "num_frames_per_special_chara"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise InvalidArgument(f"{name} must be a non-negative integer (got {value!r})")
        if self.chara_sprite_width <= 0 or self.chara_sprite_height <= 0:
            raise InvalidArgument("Character frame size must be positive")
        if self.name_start is not None and self.name_start < 0:
            raise InvalidArgument("name_start cannot be negative")
        # accept any iterable (lists from argparse / callers) but store a tuple
        object.__setattr__(self, "special_chara_indexes", tuple(self.special_chara_indexes))

    @property
    def data_start(self) -> int:
        """Absolute offset where pixel data begins (right after the offset table)."""
        return self.sprite_pack_base + self.num_images * 4

    def is_special(self, chara_index: int) -> bool:
        return chara_index in self.special_chara_indexes


# ------------------ presets ------------------

PRESETS: Dict[str, FirmwareLayout] = {
    "dmc1": FirmwareLayout(sprite_pack_base=0x80000, size_table_offset=38296, num_images=597,
                           num_charas=18, num_frames_per_chara=15, charas_start_index=210,
                           num_jogress_charas=0),
    "dmc2": FirmwareLayout(sprite_pack_base=0x80000, size_table_offset=40346, num_images=597,
                           num_charas=18, num_frames_per_chara=15, charas_start_index=210,
                           num_jogress_charas=1),
    "dmc3": FirmwareLayout(sprite_pack_base=0x80000, size_table_offset=38632, num_images=628,
                           num_charas=19, num_frames_per_chara=15, charas_start_index=210,
                           num_jogress_charas=0),
    "dmc4": FirmwareLayout(sprite_pack_base=0x80000, size_table_offset=41032, num_images=613,
                           num_charas=19, num_frames_per_chara=15, charas_start_index=210,
                           num_jogress_charas=1),
    "dmc5": FirmwareLayout(sprite_pack_base=0x80000, size_table_offset=38296, num_images=613,
                           num_charas=19, num_frames_per_chara=15, charas_start_index=210,
                           num_jogress_charas=2),
    "penc1": FirmwareLayout(sprite_pack_base=0x400000, size_table_offset=64796, num_images=759,
                            num_charas=32, num_frames_per_chara=12, charas_start_index=240),
    "penc2": FirmwareLayout(sprite_pack_base=0x400000, size_table_offset=64730, num_images=759,
                            num_charas=32, num_frames_per_chara=12, charas_start_index=240),
    "penc3": FirmwareLayout(sprite_pack_base=0x400000, size_table_offset=64736, num_images=759,
                            num_charas=32, num_frames_per_chara=12, charas_start_index=240),
}


# ------------------ frame grouping ------------------

def frame_kinds(layout: FirmwareLayout) -> Tuple[Tuple[FrameKind, ...], Tuple[FrameKind, ...]]:
    """
    Return (normal, special) frame-kind sequences for one character.

    normal : frames [+ cutin] [+ name]
    special: frames [+ cutin] + extra frames [+ cutin unless omitted] [+ name]

    When the layout has no extended special frame count the special sequence
    is the normal one.
    """
    normal: List[FrameKind] = [FrameKind.CHARACTER_SPRITE] * layout.num_frames_per_chara
    if layout.has_cutin:
        normal.append(FrameKind.CUTIN)

    special: List[FrameKind] = []
    extra = layout.num_frames_per_special_chara - layout.num_frames_per_chara
    if extra > 0:
        special.extend(normal)
        special.extend([FrameKind.CHARACTER_SPRITE] * extra)
        if layout.has_cutin and not layout.omit_special_cutin:
            special.append(FrameKind.CUTIN)
        if layout.has_name:
            special.append(FrameKind.NAME)

    if layout.has_name:
        normal.append(FrameKind.NAME)
    if not special:
        special = list(normal)
    return tuple(normal), tuple(special)


def count_frames(kinds) -> int:
    return sum(1 for k in kinds if k is FrameKind.CHARACTER_SPRITE)


def iter_charas(layout: FirmwareLayout, normal_len: int, special_len: int) -> Iterator[Tuple[int, int, bool]]:
    """Yield (chara_index, first_sprite_index, is_special) for every character."""
    start = layout.charas_start_index
    for i in range(layout.num_charas):
        special = layout.is_special(i)
        if i < layout.num_jogress_charas:
            start += 1  # jogress slot precedes the character's frames
        yield i, start, special
        start += special_len if special else normal_len


# ------------------ argparse glue ------------------

def parse_int(s: str) -> int:
    s = s.strip().lower()
    return int(s, 16) if s.startswith("0x") else int(s)


def parse_index_list(s: str) -> Tuple[int, ...]:
    return tuple(parse_int(x) for x in s.split(",") if x.strip() != "")


# (option, field, type) for every layout field that can be given on the command line
LAYOUT_OPTIONS = [
    ("--sprite-pack-base", "sprite_pack_base", parse_int),
    ("--size-table-offset", "size_table_offset", parse_int),
    ("--num-images", "num_images", parse_int),
    ("--num-charas", "num_charas", parse_int),
    ("--num-frames", "num_frames_per_chara", parse_int),
    ("--chara-start", "charas_start_index", parse_int),
    ("--num-jogress", "num_jogress_charas", parse_int),
    ("--chara-width", "chara_sprite_width", parse_int),
    ("--chara-height", "chara_sprite_height", parse_int),
    ("--special-frames", "num_frames_per_special_chara", parse_int),
    ("--special-charas", "special_chara_indexes", parse_index_list),
    ("--name-start", "name_start", parse_int),
]
LAYOUT_FLAGS = [
    ("--has-name", "has_name"),
    ("--has-cutin", "has_cutin"),
    ("--omit-special-cutin", "omit_special_cutin"),
]


def add_layout_args(ap: argparse.ArgumentParser):
    g = ap.add_argument_group("firmware layout", "Pick a preset and/or override individual fields")
    g.add_argument("--preset", choices=sorted(PRESETS), help="Known firmware layout")
    for opt, dest, conv in LAYOUT_OPTIONS:
        g.add_argument(opt, dest=dest, type=conv, default=None)
    for opt, dest in LAYOUT_FLAGS:
        g.add_argument(opt, dest=dest, action="store_true", default=None)


def layout_from_args(args) -> FirmwareLayout:
    overrides = {}
    for _, dest, _ in LAYOUT_OPTIONS:
        if getattr(args, dest, None) is not None:
            overrides[dest] = getattr(args, dest)
    for _, dest in LAYOUT_FLAGS:
        if getattr(args, dest, None):
            overrides[dest] = True

    if args.preset:
        return dataclasses.replace(PRESETS[args.preset], **overrides)
    try:
        return FirmwareLayout(**overrides)
    except TypeError:
        raise InvalidArgument("Without --preset, --sprite-pack-base, --size-table-offset, --num-images, "
                              "--num-charas, --num-frames and --chara-start are required")


# ------------------ show layout ------------------

def describe(layout: FirmwareLayout) -> List[str]:
    normal, special = frame_kinds(layout)
    lines = [f"{f.name:<30} {getattr(layout, f.name)!r}" for f in dataclasses.fields(layout)]
    lines.append(f"{'data_start':<30} 0x{layout.data_start:X}")
    lines.append(f"{'normal sequence':<30} {len(normal)} entries: {' '.join(k.value for k in normal)}")
    if special != normal:
        lines.append(f"{'special sequence':<30} {len(special)} entries: {' '.join(k.value for k in special)}")
    for i, start, is_special in iter_charas(layout, len(normal), len(special)):
        n = len(special) if is_special else len(normal)
        lines.append(f"  chara {i:3d}: sprites {start}..{start + n - 1}{' (special)' if is_special else ''}")
    return lines


def main(argv=None):
    ap = argparse.ArgumentParser(description="Show a Digimon Color firmware sprite layout")
    ap.add_argument("--list", action="store_true", help="List preset names")
    add_layout_args(ap)
    args = ap.parse_args(argv)

    if args.list:
        for name, layout in sorted(PRESETS.items()):
            print(f"{name:<6} base=0x{layout.sprite_pack_base:X} sizes@{layout.size_table_offset} "
                  f"images={layout.num_images} charas={layout.num_charas}")
        return

    try:
        layout = layout_from_args(args)
    except InvalidArgument as e:
        raise SystemExit(f"[ERROR] {e}")
    for line in describe(layout):
        print(line)


if __name__ == "__main__":
    main()
