"""Tests for addon stream normalization, quality and size inference."""

from __future__ import annotations

import pytest

from vidrelay.domain.entities import StreamQuality, StreamSource
from vidrelay.infrastructure.addons.normalizer import (
    format_bytes,
    normalize_stream,
    parse_quality,
    parse_size,
    quality_from_label,
    sort_sources,
)


class TestParseQuality:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Movie 2160p HDR", StreamQuality.UHD_4K),
            ("4K", StreamQuality.UHD_4K),
            ("Full HD", StreamQuality.FHD_1080P),
            ("[1080p] WEB", StreamQuality.FHD_1080P),
            ("HD", StreamQuality.HD_720P),
            ("480p", StreamQuality.SD_480P),
            ("360p", StreamQuality.SD_360P),
            ("CAM", StreamQuality.UNKNOWN),
            (None, StreamQuality.UNKNOWN),
        ],
    )
    def test_labels(self, text, expected) -> None:
        assert parse_quality(text) is expected

    @pytest.mark.parametrize("case", [str.lower, str.upper, str.title])
    @pytest.mark.parametrize(
        ("token", "expected"),
        [
            ("2160p", StreamQuality.UHD_4K),
            ("4k", StreamQuality.UHD_4K),
            ("uhd", StreamQuality.UHD_4K),
            ("1080p", StreamQuality.FHD_1080P),
            ("full hd", StreamQuality.FHD_1080P),
            ("fullhd", StreamQuality.FHD_1080P),
            ("720p", StreamQuality.HD_720P),
            ("hd", StreamQuality.HD_720P),
            ("480p", StreamQuality.SD_480P),
            ("360p", StreamQuality.SD_360P),
        ],
    )
    def test_every_token_in_any_case(self, token, expected, case) -> None:
        assert parse_quality(f"Some.Title.{case(token)}.WEB") is expected

    def test_numeric_provider_label(self) -> None:
        assert quality_from_label("720") is StreamQuality.HD_720P
        assert quality_from_label(" 1080p ") is StreamQuality.FHD_1080P


class TestParseSize:
    def test_declared_video_size_wins(self) -> None:
        descriptor = {"behaviorHints": {"videoSize": 1234}, "title": "5 GB"}
        assert parse_size(descriptor) == 1234

    def test_size_from_title(self) -> None:
        assert parse_size({"title": "Movie\n💾 1.5 GB"}) == 1_500_000_000

    def test_size_from_description(self) -> None:
        assert parse_size({"description": "700 MB"}) == 700_000_000

    def test_unknown(self) -> None:
        assert parse_size({"title": "no size"}) is None


class TestFormatBytes:
    def test_units(self) -> None:
        assert format_bytes(None) == ""
        assert format_bytes(2_500_000_000) == "2.5 GB"
        assert format_bytes(700_000_000) == "700 MB"


class TestNormalizeStream:
    def test_direct_url(self) -> None:
        source = normalize_stream(
            {
                "name": "Addon\n1080p",
                "title": "Movie 2.1 GB",
                "url": "https://cdn.example/a.mp4",
                "behaviorHints": {"filename": "a.mp4"},
                "subtitles": [{"url": "https://cdn.example/a.srt", "lang": "en"}],
            },
            "Addon",
        )
        assert source is not None
        assert source.quality is StreamQuality.FHD_1080P
        assert source.translation_label == "Addon"
        assert source.size_bytes == 2_100_000_000
        assert source.is_torrent is False
        assert source.filename == "a.mp4"
        assert source.subtitles[0].lang == "en"

    def test_torrent(self) -> None:
        source = normalize_stream({"name": "T", "infoHash": "abc123"}, "Torrents")
        assert source is not None
        assert source.is_torrent is True
        assert source.url is None
        assert source.info_hash == "abc123"

    def test_without_url_or_hash(self) -> None:
        assert normalize_stream({"name": "x"}, "A") is None

    def test_relative_url_rejected(self) -> None:
        assert normalize_stream({"url": "/relative.mp4"}, "A") is None


class TestStreamSourceInvariants:
    def test_torrent_flag_requires_info_hash(self) -> None:
        with pytest.raises(ValueError):
            StreamSource(provider_name="A", url=None, is_torrent=True)

    def test_url_and_torrent_flag_conflict(self) -> None:
        with pytest.raises(ValueError):
            StreamSource(
                provider_name="A",
                url="https://x.example/a",
                is_torrent=True,
                info_hash="h",
            )


class TestSortSources:
    def test_quality_then_size(self) -> None:
        def src(quality, size):
            return StreamSource("A", "https://x.example/a", quality=quality, size_bytes=size)

        ordered = sort_sources(
            [
                src(StreamQuality.HD_720P, 10),
                src(StreamQuality.FHD_1080P, None),
                src(StreamQuality.FHD_1080P, 5),
                src(StreamQuality.UNKNOWN, 100),
            ]
        )
        assert [(s.quality, s.size_bytes) for s in ordered] == [
            (StreamQuality.FHD_1080P, 5),
            (StreamQuality.FHD_1080P, None),
            (StreamQuality.HD_720P, 10),
            (StreamQuality.UNKNOWN, 100),
        ]
