#!/usr/bin/env python3
"""
Digimon Color / Pendulum Color sprite importer

Rebuilds a flash dump with edited sprites, from either:
  - a folder of per-sprite images named INDEX.png, INDEX(3 digits).png or
    INDEX_0xHEX.png (.bmp accepted), as written by export_sprites.py, or
  - with --sheets, a folder of per-character sheets CHARA.png (+ side files
    CHARA_cutin.png / CHARA_cutin0.png / CHARA_name.png).

Sheets may hold frames at a smaller integral scale (e.g. 24x24 for a 48x48
device); they are upscaled with nearest neighbour. --rows/--cols describe
sheets laid out as a grid instead of a single column.

Images with a size different from the original sprite are accepted: the size
table is updated and every later sprite moves. The device is not guaranteed
to handle a resized pack, so keep a backup of the original dump.

Without --out, or with --out naming the input file (links included), the
dump is replaced in place through a temporary file.

Usage:
    python replace_sprites.py dmc.bin --preset dmc1 --input-dir sprites_out --out dmc_mod.bin
    python replace_sprites.py dmc.bin --preset dmc5 --sheets --input-dir sheets_out

Dependencies: Pillow
"""

import argparse, os, shutil, tempfile

from export_sprites import make_progress
from firmware_info import InvalidArgument, add_layout_args, layout_from_args
from sprite_pack import SpritePack


def stage(pack, args, use_green_as_alpha) -> int:
    if args.sheets:
        n = pack.import_sprite_sheet_folder(args.input_dir, use_green_as_alpha, args.rows, args.cols,
                                            progress_cb=make_progress(5))
        print(f"[*] Staged {n} sprite sheet(s) from {args.input_dir}")
    else:
        n = pack.set_overrides_by_folder(args.input_dir)
        print(f"[*] Found {n} sprite file(s) in {args.input_dir}")
    return n


def rebuild_to(pack, src_path, out_path, use_green_as_alpha):
    """Rebuild into out_path; a temp file + os.replace when overwriting the source."""
    in_place = out_path is None or pack.is_source(out_path)
    if not in_place:
        return pack.rebuild(out_path, use_green_as_alpha), out_path

    target = os.path.realpath(src_path)
    fd, tmp_path = tempfile.mkstemp(prefix=".sprites_", suffix=".bin", dir=os.path.dirname(target))
    os.close(fd)
    try:
        shutil.copymode(target, tmp_path)
        end = pack.rebuild(tmp_path, use_green_as_alpha)
        pack.close()  # release the source before replacing it
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return end, src_path


def main(argv=None):
    ap = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter,
                                 description="Import sprites into a Digimon Color firmware dump")
    ap.add_argument("bin", help="Path to input flash dump")
    ap.add_argument("--input-dir", required=True, help="Folder with edited sprites or sheets")
    ap.add_argument("--out", default=None, help="Output path (default: overwrite input)")
    ap.add_argument("--sheets", action="store_true", help="Input folder holds per-character sheets")
    ap.add_argument("--rows", type=int, default=None, help="Sheet grid rows (default: frames per character)")
    ap.add_argument("--cols", type=int, default=None, help="Sheet grid columns (default: 1)")
    ap.add_argument("-g", "--green-transparency", dest="green_as_alpha", action="store_true",
                    help="Images use full green for transparency instead of alpha")
    ap.add_argument("--dry-run", action="store_true", help="List planned changes only")
    add_layout_args(ap)
    args = ap.parse_args(argv)

    if not os.path.isdir(args.input_dir):
        raise SystemExit(f"[ERROR] Input folder not found: {args.input_dir}")

    try:
        layout = layout_from_args(args)
        with SpritePack.open(args.bin, layout) as pack:
            stage(pack, args, args.green_as_alpha)
            changed = pack.pending_overrides()
            if args.dry_run:
                for i in changed:
                    rec = pack.records[i]
                    src = rec.file_path or "sheet"
                    print(f"[DRY] sprite {i}: {rec.width}x{rec.height} from {src}")
                print(f"[DRY] {len(changed)} sprite(s) would be replaced. No output written.")
                return
            end, written = rebuild_to(pack, args.bin, args.out, args.green_as_alpha)
    except (InvalidArgument, OSError, EOFError) as e:
        raise SystemExit(f"[ERROR] {e}")

    print(f"[DONE] Replaced {len(changed)} sprite(s); data ends at 0x{end:X}. Wrote: {written}")


if __name__ == "__main__":
    main()
