"""Tests for utility helpers."""

import pytest

from storechat.utils import chunk_spans, chunk_text, content_hash, html_to_text, normalize_origin


class TestNormalizeOrigin:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("https://Shop.Example.com", "https://shop.example.com"),
            ("https://shop.example.com:443/cart?x=1", "https://shop.example.com"),
            ("http://shop.example.com:80", "http://shop.example.com"),
            ("http://localhost:8080", "http://localhost:8080"),
            ("HTTPS://shop.example.com", "https://shop.example.com"),
        ],
    )
    def test_normalizes(self, raw, expected):
        assert normalize_origin(raw) == expected

    @pytest.mark.parametrize("raw", ["", "shop.example.com", "not a url", "https://host:notaport"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError, match="Invalid URL format"):
            normalize_origin(raw)


class TestChunking:

    def test_short_text_single_chunk(self):
        assert chunk_spans("hello", 10, 3) == [(0, 5, "hello")]

    def test_windows_overlap(self):
        spans = chunk_spans("abcdefghij", 4, 1)

        assert [(s, e) for s, e, _ in spans] == [(0, 4), (3, 7), (6, 10)]
        assert spans[1][2] == "defg"

    def test_overlap_clamped_so_window_advances(self):
        chunks = chunk_text("abcdefgh", 3, 10)
        assert chunks[0] == "abc"
        assert chunks[-1].endswith("h")

    def test_empty(self):
        assert chunk_spans("", 10, 2) == []


class TestContentHash:

    def test_stable_sha256(self):
        assert content_hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        assert content_hash("abc") != content_hash("abd")


class TestHtmlToText:

    def test_strips_tags_and_scripts(self):
        html = "<div><h2>Lamp</h2><script>track()</script><p>Warm   light</p></div>"
        text = html_to_text(html)

        assert "track" not in text
        assert "Lamp" in text
        assert "Warm light" in text

    def test_empty(self):
        assert html_to_text("") == ""
