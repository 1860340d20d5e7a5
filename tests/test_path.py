from pathlib import Path

from tubewatch.utils.path import (
    PLACEHOLDER_NAME,
    UNCATEGORIZED_DIR,
    build_output_template,
    build_target_dir,
    find_downloaded_file,
    sanitize_filename,
)


def test_sanitize_removes_unsafe_characters():
    assert sanitize_filename('a<b>c:d"e/f\\g|h?i*j`k$l') == "abcdefghijkl"


def test_sanitize_drops_control_characters_and_dot_runs():
    assert sanitize_filename("bad\x00name\x1f") == "badname"
    assert sanitize_filename("...etc/passwd") == "etcpasswd"
    assert sanitize_filename("a....b") == "ab"


def test_sanitize_placeholder_for_empty_result():
    assert sanitize_filename("  ..  ") == PLACEHOLDER_NAME
    assert sanitize_filename("???") == PLACEHOLDER_NAME
    assert sanitize_filename("") == PLACEHOLDER_NAME


def test_target_dir_uses_group_or_uncategorized(tmp_path):
    assert build_target_dir(str(tmp_path), "Chan/nel", "Te:ch") == tmp_path / "Tech" / "Channel"
    assert build_target_dir(str(tmp_path), "Channel") == tmp_path / UNCATEGORIZED_DIR / "Channel"
    assert build_target_dir(str(tmp_path), "Channel", "...") == tmp_path / UNCATEGORIZED_DIR / "Channel"
    assert build_target_dir(str(tmp_path), "???") == tmp_path / UNCATEGORIZED_DIR / PLACEHOLDER_NAME


def test_output_template(tmp_path):
    template = build_output_template(tmp_path)
    assert template == str(tmp_path / "%(title)s [%(id)s].%(ext)s")


def test_find_downloaded_file(tmp_path):
    (tmp_path / "Other [zzz].mp4").write_text("x")
    (tmp_path / "Clip [abc123].webm").write_text("x")
    (tmp_path / "Clip [abc123].mp4").write_text("x")

    assert find_downloaded_file(tmp_path, "abc123") == tmp_path / "Clip [abc123].mp4"
    assert find_downloaded_file(tmp_path, "missing") is None
    assert find_downloaded_file(Path(tmp_path / "nope"), "abc123") is None
