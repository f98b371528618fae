#!/usr/bin/env python3
"""
Digimon Color sprite pack reader/writer.

The pack is two parallel tables plus pixel data (see firmware_info.py):

    size table   @ size_table_offset : num_images x (u16 w, u16 h)
    offset table @ sprite_pack_base  : num_images x s32 (relative to base)
    pixel data   @ base + offset     : w*h RGB565 LE words

SpritePack keeps the firmware stream open, indexes every sprite, decodes
sprites (single files or per-character sheets) and stages replacement
pixels. rebuild() writes a full copy of the firmware with the data region
repacked in table order and both tables rewritten.

Naming used by the folder scanners:
    per sprite : {i}, {i:03d} or {i}_0x{i:x}  with .png, then .bmp
    sheets     : {folder}/{chara}{ext}
    side files : {sheet}_cutin{ext}, {sheet}_cutin{N}{ext} (specials), {sheet}_name{ext}

Dependencies: Pillow
"""

import os, shutil, struct, sys
from dataclasses import dataclass
from typing import BinaryIO, List, Optional

from PIL import Image

from firmware_info import FirmwareLayout, FrameKind, InvalidArgument, count_frames, frame_kinds, iter_charas
from image_converter import image_to_rgb565, load_image, rgb565_to_image, save_image

# ------------------ config ------------------
FILE_NAME_PATTERNS = ["{0}", "{0:03d}", "{0}_0x{0:x}"]
FILE_EXTENSIONS = [".png", ".bmp"]
NAME_SUFFIX = "_name"
CUTIN_SUFFIX = "_cutin"
MAX_DIMENSION = 0xFFFF


class DisposedError(RuntimeError):
    """Operation on a closed SpritePack."""


class TruncatedFirmwareError(EOFError):
    """Firmware ended before a table or sprite could be read."""


@dataclass
class SpriteRecord:
    width: int
    height: int
    data_offset: int = 0
    file_path: Optional[str] = None
    override_data: Optional[bytes] = None  # takes precedence over file_path

    @property
    def data_size(self) -> int:
        return self.width * self.height * 2


def find_file(folder_path, index) -> Optional[str]:
    for ext in FILE_EXTENSIONS:
        for pattern in FILE_NAME_PATTERNS:
            path = os.path.join(folder_path, pattern.format(index) + ext)
            if os.path.isfile(path):
                return path
    return None


def side_path(sheet_path, suffix) -> str:
    base, ext = os.path.splitext(sheet_path)
    return f"{base}{suffix}{ext}"


def warn(msg):
    print(f"[WARN] {msg}", file=sys.stderr)


class SpritePack:
    def __init__(self, fw_stream: BinaryIO, layout: FirmwareLayout):
        if fw_stream is None:
            raise InvalidArgument("fw_stream is required")
        if layout is None:
            raise InvalidArgument("layout is required")
        self._fw = fw_stream
        self.layout = layout
        self.records: List[SpriteRecord] = []
        self._closed = False
        try:
            self._read_tables()
        except Exception:
            self.close()
            raise
        self.normal_kinds, self.special_kinds = frame_kinds(layout)

    @classmethod
    def open(cls, path, layout: FirmwareLayout) -> "SpritePack":
        return cls(open(path, "rb"), layout)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._fw.close()
        self.records.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def num_images(self) -> int:
        return len(self.records)

    # ------------------ low level ------------------

    def _check_open(self):
        if self._closed:
            raise DisposedError("SpritePack is closed")

    def _read_at(self, pos, n, what) -> bytes:
        if pos < 0:
            raise TruncatedFirmwareError(f"{what}: negative position {pos}")
        self._fw.seek(pos)
        data = self._fw.read(n)
        if len(data) != n:
            raise TruncatedFirmwareError(f"{what}: wanted {n} bytes at 0x{pos:X}, got {len(data)}")
        return data

    def _read_tables(self):
        n = self.layout.num_images
        sizes = self._read_at(self.layout.size_table_offset, n * 4, "size table")
        offsets = self._read_at(self.layout.sprite_pack_base, n * 4, "offset table")
        for (w, h), (off,) in zip(struct.iter_unpack("<HH", sizes), struct.iter_unpack("<i", offsets)):
            self.records.append(SpriteRecord(width=w, height=h, data_offset=off))

    def _check_index(self, index):
        if not 0 <= index < len(self.records):
            raise InvalidArgument(f"Sprite index {index} out of range 0..{len(self.records) - 1}")

    def read_sprite_bytes(self, index) -> bytes:
        """Original pixel bytes of a sprite as stored in the firmware."""
        self._check_open()
        self._check_index(index)
        rec = self.records[index]
        return self._read_at(self.layout.sprite_pack_base + rec.data_offset, rec.data_size, f"sprite {index}")

    def kinds_for(self, is_special):
        return self.special_kinds if is_special else self.normal_kinds

    def _check_start(self, start_index, kinds):
        if start_index < 0 or start_index + len(kinds) > len(self.records):
            raise InvalidArgument(f"Invalid start image index {start_index} for {len(kinds)} entries")

    # ------------------ export ------------------

    def get_image(self, index, use_green_as_alpha=False) -> Image.Image:
        rec_bytes = self.read_sprite_bytes(index)
        rec = self.records[index]
        return rgb565_to_image(rec_bytes, rec.width, rec.height, use_green_as_alpha)

    def export_image(self, index, dest_path, use_green_as_alpha=False):
        self._check_open()
        if not dest_path:
            raise InvalidArgument("dest_path is required")
        save_image(self.get_image(index, use_green_as_alpha), dest_path)

    def export_all_images(self, dest_folder, extension=".png", use_green_as_alpha=False,
                          start=0, end=None, progress_cb=None) -> int:
        self._check_open()
        if not dest_folder:
            raise InvalidArgument("dest_folder is required")
        if not extension:
            raise InvalidArgument("extension is required")
        end = len(self.records) if end is None else min(end, len(self.records))
        start = max(0, start)
        total = max(0, end - start)
        for done, i in enumerate(range(start, end), 1):
            self.export_image(i, os.path.join(dest_folder, f"{i}{extension}"), use_green_as_alpha)
            if progress_cb:
                progress_cb(done / total, f"Exported {i}{extension}")
        return total

    def export_sprite_sheet(self, base_path, extension, start_index, use_green_as_alpha=False, is_special=False):
        self._check_open()
        if not base_path:
            raise InvalidArgument("base_path is required")
        if not extension:
            raise InvalidArgument("extension is required")
        kinds = self.kinds_for(is_special)
        self._check_start(start_index, kinds)

        fw, fh = self.layout.chara_sprite_width, self.layout.chara_sprite_height
        sheet = Image.new("RGBA", (fw, fh * count_frames(kinds)), (0, 0, 0, 0))
        frame = 0
        cutin = 0
        for i, kind in enumerate(kinds):
            img = self.get_image(start_index + i, use_green_as_alpha)
            if kind is FrameKind.CHARACTER_SPRITE:
                sheet.paste(img, (0, frame * fh))
                frame += 1
            elif kind is FrameKind.CUTIN:
                suffix = CUTIN_SUFFIX
                if is_special:
                    suffix += str(cutin)
                    cutin += 1
                save_image(img, f"{base_path}{suffix}{extension}")
            else:
                save_image(img, f"{base_path}{NAME_SUFFIX}{extension}")
        save_image(sheet, base_path + extension)

    def export_sprite_sheet_folder(self, folder_path, extension=".png", use_green_as_alpha=False,
                                   progress_cb=None) -> int:
        self._check_open()
        if not folder_path:
            raise InvalidArgument("folder_path is required")
        layout = self.layout
        count = 0
        for chara, start, is_special in iter_charas(layout, len(self.normal_kinds), len(self.special_kinds)):
            base = os.path.join(folder_path, f"{chara}")
            self.export_sprite_sheet(base, extension, start, use_green_as_alpha, is_special)
            if layout.name_start is not None:
                img = self.get_image(layout.name_start + chara, use_green_as_alpha)
                save_image(img, f"{base}{NAME_SUFFIX}{extension}")
            count += 1
            if progress_cb:
                progress_cb(count / layout.num_charas, f"Exported sheet {chara}")
        return count

    # ------------------ import ------------------

    def set_overrides_by_folder(self, folder_path) -> int:
        self._check_open()
        if not folder_path:
            raise InvalidArgument("folder_path is required")
        found = 0
        for i, rec in enumerate(self.records):
            rec.file_path = find_file(folder_path, i)
            rec.override_data = None
            if rec.file_path:
                found += 1
        return found

    def _set_resized_override(self, index, path, use_green_as_alpha):
        self._check_index(index)
        img = load_image(path)
        if img.width > MAX_DIMENSION or img.height > MAX_DIMENSION:
            raise InvalidArgument(f"{path}: {img.width}x{img.height} is too large for the size table")
        rec = self.records[index]
        rec.override_data = image_to_rgb565(img, use_green_as_alpha)
        rec.width, rec.height = img.width, img.height

    def import_sprite_sheet(self, path, start_index, use_green_as_alpha=False,
                            rows=None, cols=None, is_special=False):
        self._check_open()
        if not path:
            raise InvalidArgument("path is required")
        kinds = self.kinds_for(is_special)
        num_frames = count_frames(kinds)
        self._check_start(start_index, kinds)
        rows = num_frames if rows is None else rows
        cols = 1 if cols is None else cols
        if rows <= 0 or cols <= 0:
            raise InvalidArgument("rows and cols must be positive")
        if rows * cols < num_frames:
            raise InvalidArgument("Not enough rows and cols for number of frames per character")

        dev_w, dev_h = self.layout.chara_sprite_width, self.layout.chara_sprite_height
        sheet = load_image(path)
        cell_w = sheet.width // cols
        cell_h = sheet.height // rows
        if cell_w == 0 or cell_h == 0:
            raise InvalidArgument(f"{path}: sheet is too small for a {cols}x{rows} grid")
        # cells may not exceed the device frame
        if cell_w > dev_w or cell_h > dev_h:
            raise InvalidArgument(f"{path}: sheet frame {cell_w}x{cell_h} is larger than device frame {dev_w}x{dev_h}")
        if dev_w % cell_w:
            raise InvalidArgument(f"{path}: sheet frame width {cell_w} cannot be scaled by an integral factor to {dev_w}")
        if dev_h % cell_h:
            raise InvalidArgument(f"{path}: sheet frame height {cell_h} cannot be scaled by an integral factor to {dev_h}")

        row = col = cutin = 0
        for i, kind in enumerate(kinds):
            index = start_index + i
            if kind is FrameKind.CHARACTER_SPRITE:
                x, y = col * cell_w, row * cell_h
                frame = sheet.crop((x, y, x + cell_w, y + cell_h))
                if (cell_w, cell_h) != (dev_w, dev_h):
                    frame = frame.resize((dev_w, dev_h), Image.NEAREST)
                self.records[index].override_data = image_to_rgb565(frame, use_green_as_alpha)
                col += 1
                if col >= cols:
                    row += 1
                    col = 0
            elif kind is FrameKind.CUTIN:
                suffix = CUTIN_SUFFIX
                if is_special:
                    suffix += str(cutin)
                    cutin += 1
                cutin_path = side_path(path, suffix)
                if os.path.isfile(cutin_path):
                    self._set_resized_override(index, cutin_path, use_green_as_alpha)
            else:
                name_path = side_path(path, NAME_SUFFIX)
                if os.path.isfile(name_path):
                    self._set_resized_override(index, name_path, use_green_as_alpha)

    def import_sprite_sheet_folder(self, folder_path, use_green_as_alpha=False, rows=None, cols=None,
                                   progress_cb=None) -> int:
        self._check_open()
        if not folder_path:
            raise InvalidArgument("folder_path is required")
        layout = self.layout
        imported = 0
        for chara, start, is_special in iter_charas(layout, len(self.normal_kinds), len(self.special_kinds)):
            sheet_path = find_file(folder_path, chara)
            if sheet_path:
                self.import_sprite_sheet(sheet_path, start, use_green_as_alpha, rows, cols, is_special)
                imported += 1
            if layout.name_start is not None:
                if sheet_path:
                    candidates = [side_path(sheet_path, NAME_SUFFIX)]
                else:
                    candidates = [os.path.join(folder_path, f"{chara}{NAME_SUFFIX}{ext}") for ext in FILE_EXTENSIONS]
                name_path = next((p for p in candidates if os.path.isfile(p)), None)
                if name_path:
                    self._set_resized_override(layout.name_start + chara, name_path, use_green_as_alpha)
            if progress_cb:
                progress_cb((chara + 1) / layout.num_charas, f"Imported sheet {chara}" if sheet_path else f"No sheet for {chara}")
        return imported

    def is_source(self, path) -> bool:
        """True if path names the firmware file being read (symlinks and hardlinks included)."""
        if not os.path.exists(path):
            return False
        try:
            return os.path.samestat(os.fstat(self._fw.fileno()), os.stat(path))
        except (AttributeError, OSError):
            # in-memory streams have no descriptor; fall back to the stream name
            name = getattr(self._fw, "name", None)
            return isinstance(name, (str, os.PathLike)) and os.path.exists(name) and os.path.samefile(name, path)

    def pending_overrides(self) -> List[int]:
        """Indexes that will not be copied verbatim on rebuild."""
        return [i for i, r in enumerate(self.records) if r.override_data is not None or r.file_path]

    # ------------------ rebuild ------------------

    def _record_pixels(self, i, rec, use_green_as_alpha) -> bytes:
        if rec.override_data is not None:
            if len(rec.override_data) != rec.data_size:
                warn(f"New image data {i} has different size ({len(rec.override_data)}) "
                     f"than original ({rec.data_size}).")
            return rec.override_data
        if rec.file_path:
            img = load_image(rec.file_path)
            if (img.width, img.height) != (rec.width, rec.height):
                warn(f"New file {i} has different dimension ({img.width}x{img.height}) "
                     f"compared to original ({rec.width}x{rec.height}).")
                if img.width > MAX_DIMENSION or img.height > MAX_DIMENSION:
                    raise InvalidArgument(f"{rec.file_path}: {img.width}x{img.height} is too large for the size table")
                rec.width, rec.height = img.width, img.height
            return image_to_rgb565(img, use_green_as_alpha)
        return self.read_sprite_bytes(i)

    def rebuild(self, dest_path, use_green_as_alpha=False) -> int:
        """
        Write a complete firmware image to dest_path.

        Pixel data is written contiguously from layout.data_start in table
        order. Bytes past the new end of data keep their original values.
        Returns the absolute end offset of the data region.
        """
        self._check_open()
        if not dest_path:
            raise InvalidArgument("dest_path is required")
        if self.is_source(dest_path):
            raise InvalidArgument("dest_path must differ from the firmware being read")
        layout = self.layout
        with open(dest_path, "wb") as out:
            self._fw.seek(0)
            shutil.copyfileobj(self._fw, out)

            offsets = []
            out.seek(layout.data_start)
            for i, rec in enumerate(self.records):
                offsets.append(out.tell() - layout.sprite_pack_base)
                out.write(self._record_pixels(i, rec, use_green_as_alpha))
            end = out.tell()

            out.seek(layout.sprite_pack_base)
            out.write(struct.pack(f"<{len(offsets)}i", *offsets))

            out.seek(layout.size_table_offset)
            for rec in self.records:
                out.write(struct.pack("<HH", rec.width, rec.height))
        return end
