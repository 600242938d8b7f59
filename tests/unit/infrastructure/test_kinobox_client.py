"""Tests for the iframe player aggregator client."""

from __future__ import annotations

import httpx
import pytest
import respx

from vidrelay.domain.entities import ContentRef
from vidrelay.infrastructure.providers.kinobox import (
    KinoboxClient,
    parse_players,
    parse_translations,
)

_API = "https://players.example/api/players"

_PAYLOAD = {
    "data": [
        {
            "type": "Collaps",
            "iframeUrl": "https://embed.example/kp/77",
            "translations": [
                {"id": 1, "name": "Dub", "quality": "FHD"},
                {"id": 2, "name": "Sub"},
            ],
        },
        {"type": "Alloha", "iframeUrl": "https://alloha.example/77", "translations": []},
        {"type": "Broken", "iframeUrl": None},
    ]
}


class TestParsePlayers:
    def test_keeps_entries_with_iframe(self) -> None:
        players = parse_players(_PAYLOAD)
        assert [p.type for p in players] == ["Collaps", "Alloha"]
        assert players[0].translation == "Dub"
        assert players[0].quality == "FHD"

    def test_defaults_for_missing_translation(self) -> None:
        players = parse_players(_PAYLOAD)
        assert players[1].translation == "Неизвестно"
        assert players[1].quality == "HD"

    def test_non_dict_payload(self) -> None:
        assert parse_players(None) == []
        assert parse_players({"data": "nope"}) == []


class TestParseTranslations:
    def test_filters_by_player_type(self) -> None:
        translations = parse_translations(_PAYLOAD)
        assert [(t.id, t.display_name, t.quality) for t in translations] == [
            ("1", "Dub", "FHD"),
            ("2", "Sub", "HD"),
        ]
        assert translations[0].provider_name == "collaps"


class TestKinoboxClient:
    @respx.mock
    @pytest.mark.asyncio
    async def test_players_for_episode(self) -> None:
        route = respx.get(_API).respond(200, json=_PAYLOAD)

        async with httpx.AsyncClient() as client:
            players = await KinoboxClient(client, api_url=_API).players(
                ContentRef(77, season=1, episode=3)
            )

        assert len(players) == 2
        params = route.calls.last.request.url.params
        assert params["kinopoisk"] == "77"
        assert params["season"] == "1"
        assert params["episode"] == "3"

    @respx.mock
    @pytest.mark.asyncio
    async def test_failure_yields_no_players(self) -> None:
        respx.get(_API).mock(side_effect=httpx.ReadTimeout("slow"))

        async with httpx.AsyncClient() as client:
            client_ = KinoboxClient(client, api_url=_API)
            assert await client_.fetch(ContentRef(77)) is None
            assert await client_.players(ContentRef(77)) == []

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        respx.get(_API).respond(200, text="<html>")

        async with httpx.AsyncClient() as client:
            assert await KinoboxClient(client, api_url=_API).fetch(ContentRef(77)) is None
