"""Tests for display-name resolution through the profile endpoint."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from stockbot.directory import LineProfileClient, ProfileLookupError, UserDirectory


def _client(handler) -> LineProfileClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LineProfileClient("secret", api_base="https://api.example.test/", http_client=http_client)


def test_fetch_display_name_sends_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"userId": "U9", "displayName": " Carol "})

    name = asyncio.run(_client(handler).fetch_display_name("U9"))

    assert name == "Carol"
    assert seen == {"url": "https://api.example.test/v2/bot/profile/U9", "auth": "Bearer secret"}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, json={"message": "Not found"}),
        httpx.Response(200, json={"userId": "U9"}),
        httpx.Response(200, content=b"not json"),
    ],
)
def test_fetch_display_name_failures(response):
    with pytest.raises(ProfileLookupError):
        asyncio.run(_client(lambda request: response).fetch_display_name("U9"))


def test_fetch_without_token_fails_fast():
    client = LineProfileClient(None, http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: None)))
    with pytest.raises(ProfileLookupError):
        asyncio.run(client.fetch_display_name("U9"))


def test_transport_errors_become_lookup_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(ProfileLookupError):
        asyncio.run(_client(handler).fetch_display_name("U9"))


def test_directory_registers_new_users_once(store):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={"displayName": "Carol"})

    directory = UserDirectory(store, _client(handler), fallback_name="Unknown user")

    assert asyncio.run(directory.display_name("U-carol")) == "Carol"
    assert asyncio.run(directory.display_name("U-carol")) == "Carol"
    assert asyncio.run(directory.display_name("U-alice")) == "Alice"
    assert calls == ["/v2/bot/profile/U-carol"]
    assert asyncio.run(store.users_map()).value["U-carol"] == "Carol"


def test_directory_falls_back_without_registering(store):
    directory = UserDirectory(store, _client(lambda request: httpx.Response(500)), fallback_name="Unknown user")

    assert asyncio.run(directory.display_name("U-dave")) == "Unknown user"
    assert "U-dave" not in asyncio.run(store.users_map()).value


def test_directory_without_client_uses_fallback(store):
    directory = UserDirectory(store, None, fallback_name="Guest")
    assert asyncio.run(directory.display_name("U-erin")) == "Guest"
