"""Tests for the URL-pattern (kodik-style) decoder."""

from __future__ import annotations

import base64
import json

from unittest.mock import MagicMock

import httpx
import pytest
import respx

from vidrelay.infrastructure.providers.kodik import (
    KodikDecoder,
    _rotate,
    decrypt_links,
    decrypt_source,
    parse_embed_url,
)

_EMBED = "//kodik.info/seria/123456/0a1b2c3d/720p"


def _encrypt(url: str, rotation: int = 18) -> str:
    """Inverse of the player's obfuscation: base64 then rotate back."""
    encoded = base64.b64encode(url.encode()).decode().rstrip("=")
    return _rotate(encoded, 26 - rotation)


def _player_html(*, script: bool = True) -> str:
    params = json.dumps({"d": "example.org", "ref": ""})
    parts = [
        "<html><head>",
        f"<script>var urlParams = '{params}';</script>",
    ]
    if script:
        parts.append('<script src="/assets/js/app.player_single.abc123.js"></script>')
    parts.append("<script>videoInfo.type = 'seria'; videoInfo.id = '654321'; "
                 "videoInfo.hash = 'ffee00';</script>")
    parts.append("</head></html>")
    return "\n".join(parts)


def _player_script(path: str = "/ftor") -> str:
    token = base64.b64encode(path.encode()).decode()
    return f'$.ajax({{type:"POST",url:atob("{token}"),data:d}})'


class TestParseEmbedUrl:
    def test_strict_pattern(self) -> None:
        ref = parse_embed_url(_EMBED)
        assert ref is not None
        assert ref.host == "kodik.info"
        assert ref.type == "seria"
        assert ref.id == "123456"
        assert ref.hash == "0a1b2c3d"
        assert ref.quality == "720p"

    def test_https_scheme(self) -> None:
        ref = parse_embed_url("https://aniqit.com/video/98765/ffeedd/1080p")
        assert ref is not None
        assert ref.quality == "1080p"

    def test_permissive_fallback_defaults_quality(self) -> None:
        ref = parse_embed_url("https://kodik.cc/serial/42/Ab_Cd")
        assert ref is not None
        assert ref.host == "kodik.cc"
        assert ref.hash == "Ab_Cd"
        assert ref.quality == "720p"

    def test_too_few_parts(self) -> None:
        assert parse_embed_url("https://kodik.info/seria/1") is None

    def test_not_a_url(self) -> None:
        assert parse_embed_url("not a url") is None


class TestDecryptSource:
    def test_known_rotation(self) -> None:
        url = "//cloud.example/abc/720.mp4:hls:manifest.m3u8"
        assert decrypt_source(_encrypt(url)) == url

    def test_other_rotation_is_brute_forced(self) -> None:
        url = "//cloud.example/abc/480.mp4:hls:manifest.m3u8"
        assert decrypt_source(_encrypt(url, rotation=5)) == url

    def test_garbage_returns_none(self) -> None:
        assert decrypt_source("!!!") is None


class TestDecryptLinks:
    def test_sorted_by_quality_and_prefixed(self) -> None:
        links = {
            "360": [{"src": _encrypt("//c.example/360.mp4:hls:manifest.m3u8"), "type": "application/x-mpegURL"}],
            "720": [{"src": _encrypt("//c.example/720.mp4:hls:manifest.m3u8"), "type": "application/x-mpegURL"}],
            "480": [{"src": _encrypt("//c.example/480.mp4:hls:manifest.m3u8"), "type": "application/x-mpegURL"}],
        }
        result = decrypt_links(links)
        assert [link.quality for link in result] == ["720", "480", "360"]
        assert all(link.url.startswith("https://c.example/") for link in result)

    def test_skips_default_and_malformed(self) -> None:
        links = {
            "default": [{"src": _encrypt("//c.example/d.mp4"), "type": "x"}],
            "720": [{"src": "", "type": "x"}, "nope"],
            "480": "not-a-list",
        }
        assert decrypt_links(links) == []


class TestKodikDecoder:
    def test_name(self) -> None:
        decoder = KodikDecoder(MagicMock(spec=httpx.AsyncClient))
        assert decoder.name == "kodik"

    @respx.mock
    @pytest.mark.asyncio
    async def test_resolve_with_discovered_endpoint(self) -> None:
        respx.get("https://kodik.info/seria/123456/0a1b2c3d/720p").respond(
            200, text=_player_html()
        )
        respx.get("https://kodik.info/assets/js/app.player_single.abc123.js").respond(
            200, text=_player_script("/ftor")
        )
        links_route = respx.post("https://kodik.info/ftor").respond(
            200,
            json={
                "links": {
                    "720": [
                        {
                            "src": _encrypt("//c.example/720.mp4:hls:manifest.m3u8"),
                            "type": "application/x-mpegURL",
                        }
                    ]
                }
            },
        )

        async with httpx.AsyncClient() as client:
            decoder = KodikDecoder(client)
            result = await decoder.resolve(_EMBED)

        assert len(result) == 1
        assert result[0].quality == "720"
        assert result[0].url == "https://c.example/720.mp4:hls:manifest.m3u8"
        sent = links_route.calls.last.request.content.decode()
        assert "id=654321" in sent
        assert "hash=ffee00" in sent
        assert "bad_user=true" in sent
        assert "d=example.org" in sent

    @respx.mock
    @pytest.mark.asyncio
    async def test_falls_back_to_mirror_and_get(self) -> None:
        respx.get("https://kodik.info/seria/123456/0a1b2c3d/720p").respond(503)
        respx.get("https://aniqit.com/seria/123456/0a1b2c3d/720p").respond(
            200, text=_player_html(script=False)
        )
        respx.get(url__regex=r"https://aniqit\.com/kor\?.*").respond(
            200,
            json={
                "links": {
                    "480": [{"src": _encrypt("//c.example/480.mp4:hls:manifest.m3u8"), "type": "hls"}]
                }
            },
        )
        respx.route().respond(404)

        async with httpx.AsyncClient() as client:
            decoder = KodikDecoder(client, fallback_paths=["/ftor", "/kor"])
            result = await decoder.resolve(_EMBED)

        assert [link.quality for link in result] == ["480"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_exhausted_matrix_returns_empty(self) -> None:
        respx.route().respond(404)

        async with httpx.AsyncClient() as client:
            decoder = KodikDecoder(client, mirrors=["kodik.info"])
            assert await decoder.resolve(_EMBED) == []

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_errors_are_swallowed(self) -> None:
        respx.route().mock(side_effect=httpx.ConnectError("boom"))

        async with httpx.AsyncClient() as client:
            decoder = KodikDecoder(client, mirrors=[])
            assert await decoder.resolve(_EMBED) == []

    @pytest.mark.asyncio
    async def test_invalid_url_returns_empty(self) -> None:
        decoder = KodikDecoder(MagicMock(spec=httpx.AsyncClient))
        assert await decoder.resolve("garbage") == []
