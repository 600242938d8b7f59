"""Tests for the page-scraping (rezka-style) decoder."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from vidrelay.infrastructure.providers.rezka import (
    RezkaDecoder,
    decode_stream_payload,
    parse_page_html,
    parse_qualities,
    parse_search_results,
)

_PLAIN = (
    "[360p]https://cdn.example/v/360.mp4:hls:manifest.m3u8 or https://cdn.example/v/360.mp4,"
    "[720p]https://cdn.example/v/720.mp4:hls:manifest.m3u8 or https://cdn.example/v/720.mp4"
)

_SEARCH_HTML = """
<ul>
<li><a href="https://rezka.ag/films/drama/1-first.html"><span class="enty">First Film (2010)</span></a></li>
<li><a href="https://rezka.ag/films/drama/2-second.html"><span class="enty">Second Film (2015)</span></a></li>
<li><a href="https://rezka.ag/films/drama/3-third.html"><span class="enty">Third Film</span></a></li>
</ul>
"""

_PAGE_HTML = """
<div id="player" data-post_id="4242"></div>
<ul id="translators-list">
<li class="b-translator__item active" data-translator_id="56" title="Dubbed">Dubbed</li>
<li class="b-translator__item" data-translator_id="110" title="Original">Original</li>
</ul>
"""


def _obfuscate(plain: str) -> str:
    encoded = base64.b64encode(plain.encode()).decode()
    junk = base64.b64encode(b"@@").decode()
    return "#h" + encoded[:8] + "//_//" + junk + encoded[8:]


class TestDecodeStreamPayload:
    def test_removes_trash_and_decodes(self) -> None:
        assert decode_stream_payload(_obfuscate(_PLAIN)) == _PLAIN

    @pytest.mark.parametrize(
        "insertions",
        [
            [(130, "^@!"), (57, "!^"), (9, "$$$"), (0, "@#")],
            [(231, "!#$"), (101, "$^"), (4, "@@@"), (3, "#!")],
            [(200, "@$"), (17, "#@$"), (17, "^^")],
            [(232, "$$"), (66, "#^!"), (45, "!!"), (1, "^$@")],
        ],
    )
    def test_recovers_payload_from_several_trash_combos(self, insertions) -> None:
        encoded = base64.b64encode(_PLAIN.encode()).decode()
        obfuscated = encoded
        # offsets refer to the clean payload, so insert right to left
        for offset, combo in insertions:
            junk = base64.b64encode(combo.encode()).decode()
            obfuscated = obfuscated[:offset] + "//_//" + junk + obfuscated[offset:]

        assert decode_stream_payload("#h" + obfuscated).encode() == _PLAIN.encode()

    def test_garbage_does_not_raise(self) -> None:
        assert isinstance(decode_stream_payload("#h!!!"), str)


class TestParseQualities:
    def test_maps_quality_to_mp4(self) -> None:
        assert parse_qualities(_PLAIN) == {
            "360p": "https://cdn.example/v/360.mp4",
            "720p": "https://cdn.example/v/720.mp4",
        }

    def test_ignores_parts_without_url(self) -> None:
        assert parse_qualities("[1080p Ultra],[720p]nothing here") == {}


class TestParsers:
    def test_search_results(self) -> None:
        results = parse_search_results(_SEARCH_HTML)
        assert [r.title for r in results] == ["First Film", "Second Film", "Third Film"]
        assert [r.year for r in results] == [2010, 2015, None]
        assert results[0].url == "https://rezka.ag/films/drama/1-first.html"

    def test_page_translations(self) -> None:
        page = parse_page_html(_PAGE_HTML)
        assert page is not None
        assert page.id == "4242"
        assert [(t.id, t.title) for t in page.translations] == [
            (56, "Dubbed"),
            (110, "Original"),
        ]

    def test_page_translations_alt_markup(self) -> None:
        html = (
            '<div data-post_id="9"></div>'
            '<li class="b-translator__item" data-translator_id="7">  Voice  </li>'
        )
        page = parse_page_html(html)
        assert page is not None
        assert [(t.id, t.title) for t in page.translations] == [(7, "Voice")]

    def test_page_without_post_id(self) -> None:
        assert parse_page_html("<html></html>") is None


class TestRezkaDecoder:
    def test_name(self) -> None:
        assert RezkaDecoder(MagicMock(spec=httpx.AsyncClient)).name == "rezka"

    @respx.mock
    @pytest.mark.asyncio
    async def test_search_falls_through_mirrors(self) -> None:
        respx.post("https://a.example/engine/ajax/search.php").respond(503)
        respx.post("https://b.example/engine/ajax/search.php").respond(200, text="<ul></ul>")
        respx.post("https://c.example/engine/ajax/search.php").respond(200, text=_SEARCH_HTML)

        async with httpx.AsyncClient() as client:
            decoder = RezkaDecoder(
                client, mirrors=["https://a.example", "https://b.example", "https://c.example"]
            )
            results = await decoder.search("film")

        assert len(results) == 3

    @respx.mock
    @pytest.mark.asyncio
    async def test_search_year_filter_keeps_unknown_years(self) -> None:
        respx.post("https://a.example/engine/ajax/search.php").respond(200, text=_SEARCH_HTML)

        async with httpx.AsyncClient() as client:
            decoder = RezkaDecoder(client, mirrors=["https://a.example"])
            results = await decoder.search("film", year=2015)

        assert [r.title for r in results] == ["Second Film", "Third Film"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_resolve_stream_defaults_to_first_translation(self) -> None:
        page_url = "https://rezka.ag/films/drama/1-first.html"
        respx.get(page_url).respond(200, text=_PAGE_HTML)
        cdn = respx.post("https://rezka.ag/ajax/get_cdn_series/").respond(
            200, json={"success": True, "url": _obfuscate(_PLAIN)}
        )

        async with httpx.AsyncClient() as client:
            stream = await RezkaDecoder(client).resolve_stream(page_url)

        assert stream is not None
        assert stream.qualities["720p"] == "https://cdn.example/v/720.mp4"
        assert stream.default_translation == 56
        assert [t.id for t in stream.translations] == [56, 110]
        sent = cdn.calls.last.request.content.decode()
        assert "translator_id=56" in sent
        assert "action=get_movie" in sent
        assert "id=4242" in sent

    @respx.mock
    @pytest.mark.asyncio
    async def test_resolve_stream_explicit_translation(self) -> None:
        page_url = "https://rezka.ag/films/drama/1-first.html"
        respx.get(page_url).respond(200, text=_PAGE_HTML)
        cdn = respx.post("https://rezka.ag/ajax/get_cdn_series/").respond(
            200, json={"url": _obfuscate(_PLAIN)}
        )

        async with httpx.AsyncClient() as client:
            stream = await RezkaDecoder(client).resolve_stream(page_url, 110)

        assert stream is not None
        assert stream.default_translation == 110
        assert "translator_id=110" in cdn.calls.last.request.content.decode()

    @respx.mock
    @pytest.mark.asyncio
    async def test_stream_failure_returns_none(self) -> None:
        page_url = "https://rezka.ag/films/drama/1-first.html"
        respx.get(page_url).respond(200, text=_PAGE_HTML)
        respx.post("https://rezka.ag/ajax/get_cdn_series/").respond(500)

        async with httpx.AsyncClient() as client:
            assert await RezkaDecoder(client).resolve_stream(page_url) is None

    @respx.mock
    @pytest.mark.asyncio
    async def test_empty_url_field_returns_none(self) -> None:
        page_url = "https://rezka.ag/films/drama/1-first.html"
        respx.get(page_url).respond(200, text=_PAGE_HTML)
        respx.post("https://rezka.ag/ajax/get_cdn_series/").respond(
            200, json={"success": False, "url": False}
        )

        async with httpx.AsyncClient() as client:
            assert await RezkaDecoder(client).resolve_stream(page_url) is None
