import argparse
import os

import pytest
from PIL import Image

import export_sprites
import replace_sprites
from conftest import LAYOUT_ARGV
from firmware_info import add_layout_args, layout_from_args
from sprite_pack import SpritePack


def layout_from(argv=LAYOUT_ARGV):
    ap = argparse.ArgumentParser()
    add_layout_args(ap)
    return layout_from_args(ap.parse_args(argv))


def test_export_raw_sprites(chara_firmware, tmp_path, capsys):
    out = tmp_path / "raw"
    export_sprites.main([str(chara_firmware), "--out", str(out)] + LAYOUT_ARGV)
    assert sorted(os.listdir(out), key=lambda n: int(n.split(".")[0])) == [f"{i}.png" for i in range(9)]
    assert "[DONE] Exported 9 sprite(s)" in capsys.readouterr().out


def test_export_bmp_keeps_green(chara_firmware, tmp_path):
    out = tmp_path / "bmp"
    export_sprites.main([str(chara_firmware), "--out", str(out), "--bmp", "--end", "1"] + LAYOUT_ARGV)
    assert os.listdir(out) == ["0.bmp"]
    with Image.open(out / "0.bmp") as im:
        assert im.convert("RGB").getpixel((1, 0)) == (0, 255, 0)


def test_export_sheets(chara_firmware, tmp_path):
    out = tmp_path / "sheets"
    export_sprites.main([str(chara_firmware), "--out", str(out), "--sheets"] + LAYOUT_ARGV)
    assert {"0.png", "0_cutin.png", "0_name.png", "1.png"} <= set(os.listdir(out))


def test_replace_in_place(chara_firmware, tmp_path):
    folder = tmp_path / "edit"
    folder.mkdir()
    Image.new("RGBA", (4, 2), (255, 0, 0, 255)).save(folder / "000.png")
    original = chara_firmware.read_bytes()

    replace_sprites.main([str(chara_firmware), "--input-dir", str(folder)] + LAYOUT_ARGV)

    assert chara_firmware.read_bytes() != original
    assert len(chara_firmware.read_bytes()) == len(original)
    assert sorted(os.listdir(tmp_path)) == ["edit", "fw.bin"]
    with SpritePack.open(chara_firmware, layout_from()) as pack:
        assert pack.get_image(0).getpixel((1, 0)) == (255, 0, 0, 255)


def test_replace_to_new_file_and_dry_run(chara_firmware, tmp_path, capsys):
    sheets = tmp_path / "sheets"
    export_sprites.main([str(chara_firmware), "--out", str(sheets), "--sheets"] + LAYOUT_ARGV)
    original = chara_firmware.read_bytes()

    replace_sprites.main([str(chara_firmware), "--input-dir", str(sheets), "--sheets", "--dry-run"] + LAYOUT_ARGV)
    assert "[DRY] 8 sprite(s) would be replaced" in capsys.readouterr().out
    assert chara_firmware.read_bytes() == original

    out = tmp_path / "new.bin"
    replace_sprites.main([str(chara_firmware), "--input-dir", str(sheets), "--sheets", "--out", str(out)] + LAYOUT_ARGV)
    assert out.read_bytes() == original


def test_bad_sheet_aborts_without_touching_firmware(chara_firmware, tmp_path):
    folder = tmp_path / "bad"
    folder.mkdir()
    Image.new("RGBA", (23, 46)).save(folder / "0.png")
    original = chara_firmware.read_bytes()
    with pytest.raises(SystemExit):
        replace_sprites.main([str(chara_firmware), "--input-dir", str(folder), "--sheets"] + LAYOUT_ARGV)
    assert chara_firmware.read_bytes() == original
    assert sorted(os.listdir(tmp_path)) == ["bad", "fw.bin"]


def test_missing_layout_fields_exit(chara_firmware, tmp_path):
    with pytest.raises(SystemExit):
        export_sprites.main([str(chara_firmware), "--out", str(tmp_path / "x"), "--num-images", "9"])


def edit_folder(tmp_path):
    folder = tmp_path / "edit"
    folder.mkdir()
    Image.new("RGBA", (4, 2), (255, 0, 0, 255)).save(folder / "0.png")
    return folder


def test_out_symlink_to_input_is_rewritten_in_place(chara_firmware, tmp_path):
    folder = edit_folder(tmp_path)
    alias = tmp_path / "alias.bin"
    os.symlink(chara_firmware, alias)
    size = chara_firmware.stat().st_size

    replace_sprites.main([str(chara_firmware), "--input-dir", str(folder), "--out", str(alias)] + LAYOUT_ARGV)

    assert alias.is_symlink()
    assert chara_firmware.stat().st_size == size
    assert sorted(os.listdir(tmp_path)) == ["alias.bin", "edit", "fw.bin"]
    with SpritePack.open(alias, layout_from()) as pack:
        assert pack.get_image(0).getpixel((0, 0)) == (255, 0, 0, 255)


def test_in_place_keeps_file_mode(chara_firmware, tmp_path):
    folder = edit_folder(tmp_path)
    os.chmod(chara_firmware, 0o644)
    replace_sprites.main([str(chara_firmware), "--input-dir", str(folder)] + LAYOUT_ARGV)
    assert chara_firmware.stat().st_mode & 0o777 == 0o644


def test_sheet_import_prints_progress(chara_firmware, tmp_path, capsys):
    sheets = tmp_path / "sheets"
    export_sprites.main([str(chara_firmware), "--out", str(sheets), "--sheets"] + LAYOUT_ARGV)
    capsys.readouterr()
    replace_sprites.main([str(chara_firmware), "--input-dir", str(sheets), "--sheets"] + LAYOUT_ARGV)
    out = capsys.readouterr().out
    assert "100.0%  Imported sheet 1" in out
    assert "[*] Staged 2 sprite sheet(s)" in out
