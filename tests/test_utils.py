from datetime import datetime, timedelta

from app.utils import addon_base_url, first_line, is_stale, strip_markup


def test_strip_markup_replaces_tags():
    assert strip_markup("<b>Movie</b> 1080p") == "Movie  1080p"


def test_first_line():
    assert first_line(" Movie.2020.mkv \n👤 12 seeds") == "Movie.2020.mkv"


def test_addon_base_url_strips_manifest_suffix():
    assert (
        addon_base_url("https://addon.example.com/abc/manifest.json")
        == "https://addon.example.com/abc"
    )
    assert addon_base_url("https://addon.example.com/abc/") == "https://addon.example.com/abc"


def test_is_stale_boundaries():
    now = datetime(2024, 1, 1, 12, 0, 0)

    assert is_stale(None, 60, now=now)
    assert not is_stale(now - timedelta(seconds=30), 60, now=now)
    assert is_stale(now - timedelta(hours=2), 3600, now=now)
