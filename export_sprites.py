#!/usr/bin/env python3
"""
Digimon Color / Pendulum Color sprite exporter

Exports the RGB565 sprite pack of a flash dump either as one file per sprite
(<index>.png) or, with --sheets, as one tall sheet per character
(<chara>.png) plus its side files (<chara>_cutin.png, <chara>_name.png).

Transparency: full green (0x07E0) is exported as a transparent pixel.
Use -g to keep it as visible green instead. BMP output always keeps green,
since BMP has no alpha.

Usage:
    python export_sprites.py dmc.bin --preset dmc1 --out sprites_out
    python export_sprites.py dmc.bin --preset dmc5 --sheets --out sheets_out
    python export_sprites.py dump.bin --sprite-pack-base 0x80000 --size-table-offset 38296 \
        --num-images 597 --num-charas 18 --num-frames 15 --chara-start 210 --out sprites_out

Dependencies: Pillow
"""

import argparse, os

from firmware_info import InvalidArgument, add_layout_args, layout_from_args
from sprite_pack import SpritePack


def make_progress(every=50):
    state = {"n": 0}

    def cb(fraction, message):
        state["n"] += 1
        if state["n"] % every == 0 or fraction >= 1.0:
            print(f"[+] {fraction * 100:5.1f}%  {message}")
    return cb


def main(argv=None):
    ap = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter,
                                 description="Export sprites from a Digimon Color firmware dump")
    ap.add_argument("bin", help="Path to flash dump")
    ap.add_argument("--out", default="sprites_out", help="Output directory")
    ap.add_argument("--sheets", action="store_true", help="Export per-character sprite sheets")
    ap.add_argument("--bmp", action="store_true", help="Write BMP instead of PNG (implies -g)")
    ap.add_argument("-g", "--green-transparency", dest="green_as_alpha", action="store_true",
                    help="Keep full green pixels as green instead of transparent")
    ap.add_argument("--start", type=int, default=0, help="Start sprite index (inclusive, raw export only)")
    ap.add_argument("--end", type=int, default=None, help="End sprite index (exclusive). Default = all")
    add_layout_args(ap)
    args = ap.parse_args(argv)

    use_green_as_alpha = args.green_as_alpha or args.bmp
    ext = ".bmp" if args.bmp else ".png"

    try:
        layout = layout_from_args(args)
        os.makedirs(args.out, exist_ok=True)
        print(f"[*] Loading {args.bin} ...")
        with SpritePack.open(args.bin, layout) as pack:
            print(f"[*] {pack.num_images} sprites, pack base 0x{layout.sprite_pack_base:X}")
            if args.sheets:
                n = pack.export_sprite_sheet_folder(args.out, ext, use_green_as_alpha, progress_cb=make_progress(5))
                print(f"[DONE] Exported {n} sprite sheet(s) to {args.out}")
            else:
                n = pack.export_all_images(args.out, ext, use_green_as_alpha, args.start, args.end,
                                           progress_cb=make_progress())
                print(f"[DONE] Exported {n} sprite(s) to {args.out}")
    except (InvalidArgument, OSError, EOFError) as e:
        raise SystemExit(f"[ERROR] {e}")


if __name__ == "__main__":
    main()
