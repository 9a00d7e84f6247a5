"""Tests for destination path rendering."""

from datetime import datetime

import pytest

from nasbox.services.media_source import MediaItem
from nasbox.services.path_renderer import (
    PathRenderer,
    extension_for,
    mask_remote_path,
    sanitize_path,
    sanitize_segment,
)


def make_item(**overrides):
    values = dict(
        media_id="IMG_0042",
        display_name="IMG_0042.JPG",
        mime_type="image/jpeg",
        captured_at=datetime(2024, 5, 17, 8, 30, 5),
        size_bytes=2048,
        album="Camera",
    )
    values.update(overrides)
    return MediaItem(**values)


@pytest.fixture
def renderer():
    return PathRenderer(device_label="Pixel 8")


class TestRender:
    """Tests for render."""

    def test_default_templates(self, renderer):
        path = renderer.render("Backups/Phone", "", "", make_item())
        assert path == "Backups/Phone/2024/05/17/20240517_083005_IMG_0042.jpg"

    def test_all_tokens(self, renderer):
        path = renderer.render(
            "base",
            "{device}/{album}/{year}-{month}-{day}",
            "{time}_{mediaId}.{ext}",
            make_item(),
        )
        assert path == "base/Pixel 8/Camera/2024-05-17/083005_IMG_0042.jpg"

    def test_album_falls_back_to_label(self, renderer):
        path = renderer.render("", "{album}", "{mediaId}.{ext}", make_item(album=None), "Holiday")
        assert path == "Holiday/IMG_0042.jpg"

    def test_missing_capture_time_uses_epoch(self, renderer):
        result = renderer.render_result("", "", "", make_item(captured_at=None))
        assert result.path == "1970/01/01/19700101_000000_IMG_0042.jpg"
        assert {"year", "timestamp"} <= result.used_default_tokens

    def test_unknown_token_renders_unknown(self, renderer):
        result = renderer.render_result("", "{camera}", "{mediaId}.{ext}", make_item())
        assert result.path == "unknown/IMG_0042.jpg"
        assert "camera" in result.used_default_tokens

    def test_tokens_are_case_sensitive(self, renderer):
        result = renderer.render_result("", "{Year}", "{mediaId}.{ext}", make_item())
        assert result.path == "unknown/IMG_0042.jpg"

    def test_token_values_cannot_inject_separators(self, renderer):
        item = make_item(album="../../etc", media_id="a/b\\c")
        path = renderer.render("base", "{album}", "{mediaId}.{ext}", item)
        assert path == "base/.._.._etc/a_b_c.jpg"

    def test_directory_template_splits_on_both_separators(self, renderer):
        path = renderer.render("\\base\\", "{year}\\{month}//{day}", "{mediaId}.{ext}", make_item())
        assert path == "base/2024/05/17/IMG_0042.jpg"

    def test_illegal_characters_in_template_replaced(self, renderer):
        path = renderer.render("", 'a<b>c:d"e|f?g*h', "{mediaId}.{ext}", make_item())
        assert path == "a_b_c_d_e_f_g_h/IMG_0042.jpg"

    def test_traversal_segments_are_neutralised(self, renderer):
        path = renderer.render("base", "../{year}", "{mediaId}.{ext}", make_item())
        assert path == "base/_/2024/IMG_0042.jpg"


class TestSanitize:
    """Tests for segment sanitization."""

    @pytest.mark.parametrize("char", list('<>:"\\|?*'))
    def test_illegal_characters_become_underscore(self, char):
        assert sanitize_segment(f"a{char}b") == "a_b"

    def test_control_characters_become_underscore(self):
        assert sanitize_segment("a\x01b\x1fc") == "a_b_c"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_blank_segment_becomes_unknown(self, value):
        assert sanitize_segment(value) == "unknown"

    def test_sanitize_path_drops_empty_segments(self):
        assert sanitize_path("/a//b\\c/") == "a/b/c"


class TestExtension:
    """Tests for extension derivation."""

    def test_from_display_name(self):
        assert extension_for("clip.MOV", "video/mp4") == "mov"

    def test_from_mime_subtype(self):
        assert extension_for("clip", "video/mp4") == "mp4"

    def test_defaults_to_bin(self):
        assert extension_for("clip", None) == "bin"
        assert extension_for("clip.", "") == "bin"


def test_mask_remote_path_keeps_last_segments():
    assert mask_remote_path("Backups/Phone/2024/05/a.jpg") == ".../05/a.jpg"
    assert mask_remote_path("a.jpg") == "a.jpg"
