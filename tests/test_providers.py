"""Provider catalog fetches against a local aiohttp server."""

from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from overlay_emotes.api.base import EmoteApiClient
from overlay_emotes.core.models import StreamPlatform
from overlay_emotes.core.settings import EmoteSettings
from overlay_emotes.emotes.errors import NetworkError, ParseError
from overlay_emotes.emotes.models import GLOBAL_SCOPE, EmoteScope
from overlay_emotes.emotes.provider import (
    BTTVProvider,
    FFZProvider,
    KickProvider,
    SevenTVProvider,
    ThirdPartyEmoteProvider,
    TwitchProvider,
    create_provider,
    create_providers,
)

pytestmark = pytest.mark.asyncio


@asynccontextmanager
async def serve(routes: dict):
    """Serve canned responses keyed by path: (status, json-or-text body)."""
    requests = []

    async def handler(request: web.Request) -> web.Response:
        requests.append(request)
        if request.path not in routes:
            return web.json_response({"message": "not found"}, status=404)
        status, body = routes[request.path]
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    app = web.Application()
    app.router.add_get("/{tail:.*}", handler)
    server = TestServer(app)
    await server.start_server()
    client = EmoteApiClient(timeout=5)
    try:
        yield f"http://{server.host}:{server.port}", client, requests
    finally:
        await client.close()
        await server.close()


# --- bttv ---


BTTV_GLOBAL = [
    {"id": "54fa8f1401e468494b85b537", "code": "(ditto)", "imageType": "gif", "animated": True},
    {"id": "54fa903b01e468494b85b53f", "code": "DatSauce", "imageType": "png"},
    {"code": "NoId"},
    "garbage",
]


async def test_bttv_global_skips_malformed_entries():
    async with serve({"/3/cached/emotes/global": (200, BTTV_GLOBAL)}) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_global()

    assert result.ok
    assert [e.code for e in result.emotes] == ["(ditto)", "DatSauce"]
    ditto = result.emotes[0]
    assert ditto.animated
    assert ditto.scope == GLOBAL_SCOPE
    assert ditto.image_url("3x") == "https://cdn.betterttv.net/emote/54fa8f1401e468494b85b537/3x"
    assert [img.format for img in ditto.images] == ["gif", "gif", "gif"]


async def test_bttv_channel_merges_shared_emotes():
    payload = {
        "channelEmotes": [{"id": "a1", "code": "Mine", "imageType": "png"}],
        "sharedEmotes": [{"id": "b2", "code": "Shared", "imageType": "png"}],
    }
    routes = {"/3/cached/users/twitch/123": (200, payload)}
    async with serve(routes) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_channel("123")

    assert [e.code for e in result.emotes] == ["Mine", "Shared"]
    assert all(e.scope == EmoteScope.channel("123") for e in result.emotes)


async def test_bttv_wrong_shape_is_parse_error():
    routes = {"/3/cached/emotes/global": (200, {"emotes": []})}
    async with serve(routes) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_global()

    assert isinstance(result.error, ParseError)
    assert not result.error.retryable
    assert result.emotes == []


async def test_invalid_json_is_parse_error():
    routes = {"/3/cached/emotes/global": (200, "<html>oops</html>")}
    async with serve(routes) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_global()

    assert isinstance(result.error, ParseError)


async def test_server_error_carries_url_and_status():
    routes = {"/3/cached/emotes/global": (503, {"message": "down"})}
    async with serve(routes) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_global()

    error = result.error
    assert isinstance(error, NetworkError)
    assert error.status == 503
    assert error.url == f"{provider.BASE_URL}/cached/emotes/global"
    assert error.retryable


async def test_not_found_is_not_retryable():
    async with serve({}) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_channel("404")

    assert isinstance(result.error, NetworkError)
    assert result.error.status == 404
    assert not result.error.retryable


async def test_connection_refused_is_retryable_network_error():
    client = EmoteApiClient(timeout=2)
    provider = BTTVProvider(client)
    provider.BASE_URL = "http://127.0.0.1:9"
    try:
        result = await provider.fetch_global()
    finally:
        await client.close()

    assert isinstance(result.error, NetworkError)
    assert result.error.status == 0
    assert result.error.retryable


async def test_third_party_channel_on_kick_is_empty():
    async with serve({}) as (base, client, requests):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_channel("xqc", StreamPlatform.KICK)

    assert result.ok
    assert result.emotes == []
    assert requests == []


# --- 7tv ---


SEVENTV_GLOBAL = {
    "id": "global",
    "emotes": [
        {
            "id": "60ae3e98b2ecb0150535c6b7",
            "name": "RainTime",
            "flags": 1,
            "data": {
                "id": "60ae3e98b2ecb0150535c6b7",
                "name": "RainTime",
                "animated": True,
                "host": {
                    "url": "//cdn.7tv.app/emote/60ae3e98b2ecb0150535c6b7",
                    "files": [
                        {"name": "1x.avif"},
                        {"name": "1x.webp"},
                        {"name": "2x.webp"},
                    ],
                },
            },
        },
        {
            "id": "63071bb9464de28875c52531",
            "name": "Clap",
            "flags": 0,
            "data": {"id": "63071bb9464de28875c52531", "name": "Clap", "flags": 256},
        },
    ],
}


async def test_seventv_global_parses_flags_and_files():
    routes = {"/v3/emote-sets/global": (200, SEVENTV_GLOBAL)}
    async with serve(routes) as (base, client, _):
        provider = SevenTVProvider(client)
        provider.BASE_URL = f"{base}/v3"
        result = await provider.fetch_global()

    rain, clap = result.emotes
    assert rain.zero_width
    assert rain.animated
    assert [img.resolution for img in rain.images] == ["1x", "2x"]
    assert rain.image_url("2x") == "https://cdn.7tv.app/emote/60ae3e98b2ecb0150535c6b7/2x.webp"
    assert clap.zero_width
    assert not clap.animated
    assert len(clap.images) == 4


async def test_seventv_channel_uses_platform_path():
    payload = {"emote_set": {"emotes": [{"id": "e1", "name": "KickOnly", "data": {}}]}}
    routes = {"/v3/users/kick/668": (200, payload)}
    async with serve(routes) as (base, client, _):
        provider = SevenTVProvider(client)
        provider.BASE_URL = f"{base}/v3"
        result = await provider.fetch_channel("668", StreamPlatform.KICK)

    assert [e.code for e in result.emotes] == ["KickOnly"]


async def test_seventv_user_without_emote_set():
    routes = {"/v3/users/twitch/1": (200, {"id": "u1", "emote_set": None})}
    async with serve(routes) as (base, client, _):
        provider = SevenTVProvider(client)
        provider.BASE_URL = f"{base}/v3"
        result = await provider.fetch_channel("1")

    assert result.ok
    assert result.emotes == []


# --- ffz ---


FFZ_GLOBAL = {
    "default_sets": [3],
    "sets": {
        "3": {
            "emoticons": [
                {
                    "id": 25927,
                    "name": "CatBag",
                    "urls": {"1": "//cdn.ffz.test/1", "2": "//cdn.ffz.test/2"},
                },
                {"id": 1, "name": "NoUrls", "urls": {}},
            ]
        },
        "4": {"emoticons": [{"id": 9, "name": "NotDefault", "urls": {"1": "//x"}}]},
    },
}


async def test_ffz_global_reads_default_sets_only():
    async with serve({"/v1/set/global": (200, FFZ_GLOBAL)}) as (base, client, _):
        provider = FFZProvider(client)
        provider.BASE_URL = f"{base}/v1"
        result = await provider.fetch_global()

    assert [e.code for e in result.emotes] == ["CatBag"]
    catbag = result.emotes[0]
    assert catbag.id == "25927"
    assert catbag.image_url("2x") == "https://cdn.ffz.test/2"
    assert catbag.image_url("4x") == "https://cdn.ffz.test/2"


async def test_ffz_animated_urls_take_precedence():
    payload = {
        "sets": {
            "77": {
                "emoticons": [
                    {
                        "id": 5,
                        "name": "Dance",
                        "urls": {"1": "https://static/1"},
                        "animated": {"1": "https://anim/1"},
                    }
                ]
            }
        }
    }
    async with serve({"/v1/room/id/123": (200, payload)}) as (base, client, _):
        provider = FFZProvider(client)
        provider.BASE_URL = f"{base}/v1"
        result = await provider.fetch_channel("123")

    dance = result.emotes[0]
    assert dance.animated
    assert dance.images[0].format == "webp"
    assert dance.image_url("1x") == "https://anim/1"


async def test_ffz_missing_sets_is_parse_error():
    async with serve({"/v1/room/id/123": (200, {"room": {}})}) as (base, client, _):
        provider = FFZProvider(client)
        provider.BASE_URL = f"{base}/v1"
        result = await provider.fetch_channel("123")

    assert isinstance(result.error, ParseError)


# --- twitch ---


async def test_twitch_helix_sends_credentials_and_parses():
    payload = {
        "data": [
            {
                "id": "25",
                "name": "Kappa",
                "format": ["static"],
                "images": {
                    "url_1x": "https://static-cdn/25/1.0",
                    "url_2x": "https://static-cdn/25/2.0",
                    "url_4x": "https://static-cdn/25/3.0",
                },
            },
            {"id": "emotesv2_abc", "name": "Dance", "format": ["static", "animated"], "images": {}},
        ]
    }
    async with serve({"/helix/chat/emotes": (200, payload)}) as (base, client, requests):
        provider = TwitchProvider(client, oauth_token="tok", client_id="cid")
        provider.BASE_URL = f"{base}/helix"
        result = await provider.fetch_channel("141981764")

    request = requests[0]
    assert request.query["broadcaster_id"] == "141981764"
    assert request.headers["Client-Id"] == "cid"
    assert request.headers["Authorization"] == "Bearer tok"

    kappa, dance = result.emotes
    assert kappa.image_url("4x") == "https://static-cdn/25/3.0"
    assert dance.animated
    assert {img.format for img in dance.images} == {"png", "gif"}
    assert all(e.scope == EmoteScope.channel("141981764") for e in result.emotes)


async def test_twitch_unauthorized_is_fatal_network_error():
    routes = {"/helix/chat/emotes/global": (401, {"message": "invalid token"})}
    async with serve(routes) as (base, client, requests):
        provider = TwitchProvider(client)
        provider.BASE_URL = f"{base}/helix"
        result = await provider.fetch_global()

    assert "Authorization" not in requests[0].headers
    assert result.error.status == 401
    assert not result.error.retryable


# --- kick ---


async def test_kick_channel_sets():
    payload = [
        {"id": "Global", "emotes": [{"id": 37226, "name": "KEKW"}]},
        {"id": 668, "emotes": [{"id": 1, "name": "xqcL"}, {"name": "NoId"}]},
    ]
    async with serve({"/emotes/xqc": (200, payload)}) as (base, client, _):
        provider = KickProvider(client)
        provider.BASE_URL = base
        result = await provider.fetch_channel("xqc", StreamPlatform.KICK)
        global_result = await provider.fetch_global()

    assert [e.code for e in result.emotes] == ["KEKW", "xqcL"]
    assert result.emotes[0].id == "37226"
    assert global_result.ok
    assert global_result.emotes == []


# --- factory ---


def _settings(**overrides):
    settings = EmoteSettings()
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


async def test_create_providers_respects_priority_and_enablement():
    settings = _settings(
        enable_kick=False, provider_priority=["ffz", "bttv", "7tv", "twitch", "kick"]
    )
    providers = create_providers(settings, EmoteApiClient())
    assert [p.name for p in providers] == ["ffz", "bttv", "7tv", "twitch"]


async def test_create_provider_passes_twitch_credentials():
    settings = _settings(twitch_client_id="cid", twitch_oauth_token="tok")
    provider = create_provider("twitch", settings, EmoteApiClient())
    assert provider._get_headers() == {"Client-Id": "cid", "Authorization": "Bearer tok"}


async def test_create_provider_unknown_name():
    with pytest.raises(ValueError):
        create_provider("nope", EmoteSettings(), EmoteApiClient())


# --- malformed entries ---


async def test_seventv_entry_with_bad_flags_is_skipped():
    payload = {
        "emotes": [
            {"id": "e1", "name": "Good", "flags": 0, "data": {"id": "e1"}},
            {"id": "e2", "name": "Bad", "flags": "oops", "data": {"id": "e2"}},
        ]
    }
    async with serve({"/v3/emote-sets/global": (200, payload)}) as (base, client, _):
        provider = SevenTVProvider(client)
        provider.BASE_URL = f"{base}/v3"
        result = await provider.fetch_global()

    assert result.ok
    assert [e.code for e in result.emotes] == ["Good"]


async def test_ffz_entry_with_list_urls_is_skipped():
    payload = {
        "sets": {
            "77": {
                "emoticons": [
                    {"id": 1, "name": "Listy", "urls": ["//cdn.ffz.test/1"]},
                    {"id": 2, "name": "Fine", "urls": {"1": "//cdn.ffz.test/2"}},
                ]
            }
        }
    }
    async with serve({"/v1/room/id/123": (200, payload)}) as (base, client, _):
        provider = FFZProvider(client)
        provider.BASE_URL = f"{base}/v1"
        result = await provider.fetch_channel("123")

    assert result.ok
    assert [e.code for e in result.emotes] == ["Fine"]


async def test_parse_error_carries_request_url():
    routes = {"/3/cached/emotes/global": (200, {"emotes": []})}
    async with serve(routes) as (base, client, _):
        provider = BTTVProvider(client)
        provider.BASE_URL = f"{base}/3"
        result = await provider.fetch_global()

    assert isinstance(result.error, ParseError)
    assert result.error.url == f"{provider.BASE_URL}/cached/emotes/global"
    assert provider.name not in result.error.url


async def test_seventv_emote_set_of_wrong_type_is_parse_error():
    routes = {"/v3/users/twitch/1": (200, {"id": "u1", "emote_set": [1]})}
    async with serve(routes) as (base, client, _):
        provider = SevenTVProvider(client)
        provider.BASE_URL = f"{base}/v3"
        result = await provider.fetch_channel("1")

    assert isinstance(result.error, ParseError)
    assert result.error.url == f"{provider.BASE_URL}/users/twitch/1"
    assert result.emotes == []


async def test_ffz_set_of_wrong_type_is_parse_error():
    payload = {"sets": {"77": ["not", "a", "set"]}}
    async with serve({"/v1/room/id/123": (200, payload)}) as (base, client, _):
        provider = FFZProvider(client)
        provider.BASE_URL = f"{base}/v1"
        result = await provider.fetch_channel("123")

    assert isinstance(result.error, ParseError)
    assert result.error.url == f"{provider.BASE_URL}/room/id/123"


async def test_provider_must_implement_parse_emote():
    class Incomplete(ThirdPartyEmoteProvider):
        @property
        def name(self):
            return "bttv"

        async def _fetch_global(self):
            return []

        async def _fetch_channel(self, channel_id, platform):
            return []

    with pytest.raises(TypeError):
        Incomplete(EmoteApiClient())
