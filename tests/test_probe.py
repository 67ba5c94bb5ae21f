"""Tests for the stream probe engine."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import httpx
import pytest

from app.config import Settings
from app.db_models import MediaRecord
from app.exceptions import AuthError, NetworkError
from app.models import AddonDescriptor, FilterPreferences
from app.services.id_resolver import ExternalIdResolver
from app.services.probe import (
    NO_IMDB_ID,
    NO_STREAM_ADDONS,
    StreamProbe,
    stream_lookup_key,
    stream_url,
)
from app.services.tmdb import TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeDirectory:
    def __init__(self, addons: Sequence[AddonDescriptor] = (), error: Exception | None = None):
        self.addons = list(addons)
        self.error = error
        self.calls: list[str | None] = []

    async def list_stream_capable_addons(self, auth_key: str | None) -> list[AddonDescriptor]:
        self.calls.append(auth_key)
        if self.error is not None:
            raise self.error
        return list(self.addons)


class FakeStore:
    def __init__(self) -> None:
        self.written: dict[int, str] = {}

    async def set_imdb_id(self, media_id: int, imdb_id: str) -> None:
        self.written[media_id] = imdb_id


def make_addon(
    addon_id: str, *, types: Sequence[str] = ("movie", "series"), suffix: str = "/manifest.json"
) -> AddonDescriptor:
    return AddonDescriptor(
        id=addon_id,
        name=addon_id.upper(),
        version="1.0.0",
        transport_url=f"https://{addon_id}.example.com/token{suffix}",
        types=list(types),
        resources=["stream"],
    )


def make_item(**overrides: Any) -> MediaRecord:
    values: dict[str, Any] = {
        "id": 1,
        "type": "movie",
        "tmdb_id": 603,
        "imdb_id": "tt0133093",
        "title": "The Matrix",
    }
    values.update(overrides)
    return MediaRecord(**values)


def streams(*titles: str) -> dict[str, Any]:
    return {"streams": [{"name": "Addon", "title": title} for title in titles]}


def build_probe(
    directory: FakeDirectory,
    handler,
    *,
    addon_timeout: float = 10.0,
) -> tuple[StreamProbe, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    resolver = ExternalIdResolver(FakeStore())
    probe = StreamProbe(directory, resolver, http_client, addon_timeout=addon_timeout)
    return probe, http_client


def test_stream_lookup_key_uses_first_episode_for_series() -> None:
    assert stream_lookup_key("series", "tt0944947") == "tt0944947:1:1"
    assert stream_lookup_key("movie", "tt0133093") == "tt0133093"


def test_stream_url_strips_manifest_suffix() -> None:
    addon = make_addon("torrentio")

    assert (
        stream_url(addon, "movie", "tt0133093")
        == "https://torrentio.example.com/token/stream/movie/tt0133093.json"
    )


@pytest.mark.anyio("asyncio")
async def test_probe_aggregates_across_addons() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "alpha.example.com":
            return httpx.Response(200, json=streams("Matrix.1080p", "Matrix.720p"))
        return httpx.Response(200, json=streams("Matrix.2160p"))

    directory = FakeDirectory([make_addon("alpha"), make_addon("beta")])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(), "key")

    assert verdict.available
    assert verdict.stream_count == 3
    assert [addon.id for addon in verdict.addons] == ["alpha", "beta"]
    assert verdict.addons[0].stream_count == 2
    assert verdict.addons[0].streams[0].quality == "1080P"
    assert verdict.reason is None
    assert directory.calls == ["key"]


@pytest.mark.anyio("asyncio")
async def test_series_probe_uses_sentinel_episode() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json=streams("Show.S01E01.1080p"))

    directory = FakeDirectory([make_addon("alpha")])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(
            make_item(type="series", imdb_id="tt0944947", title="GoT"), "key"
        )

    assert verdict.available
    assert paths == ["/token/stream/series/tt0944947:1:1.json"]


@pytest.mark.anyio("asyncio")
async def test_addon_without_item_type_is_skipped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("series-only addon must not be queried for a movie")

    directory = FakeDirectory([make_addon("anime", types=["series"])])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(), "key")

    assert not verdict.available
    assert verdict.stream_count == 0
    assert verdict.addons == []


@pytest.mark.anyio("asyncio")
async def test_minimum_resolution_filters_out_lower_quality() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=streams("Matrix.1080p.WEB", "Matrix.1080p.BluRay"))

    directory = FakeDirectory([make_addon("alpha")])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(
            make_item(), "key", filters=FilterPreferences(min_resolution="4K")
        )

    assert not verdict.available
    assert verdict.stream_count == 0
    assert verdict.addons == []


@pytest.mark.anyio("asyncio")
async def test_failing_addon_does_not_affect_others() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "beta.example.com":
            raise httpx.ReadTimeout("timed out", request=request)
        if host == "gamma.example.com":
            return httpx.Response(200, json=streams("Matrix.720p"))
        return httpx.Response(200, json=streams("Matrix.1080p"))

    directory = FakeDirectory(
        [make_addon("alpha"), make_addon("beta"), make_addon("gamma")]
    )
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(), "key")

    assert verdict.available
    assert verdict.stream_count == 2
    assert [addon.id for addon in verdict.addons] == ["alpha", "gamma"]


@pytest.mark.anyio("asyncio")
async def test_slow_addon_is_bounded_by_timeout() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "slow.example.com":
            await asyncio.sleep(5)
        return httpx.Response(200, json=streams("Matrix.1080p"))

    directory = FakeDirectory([make_addon("slow"), make_addon("fast")])
    probe, http_client = build_probe(directory, handler, addon_timeout=0.05)
    async with http_client:
        verdict = await probe.probe(make_item(), "key")

    assert [addon.id for addon in verdict.addons] == ["fast"]
    assert verdict.stream_count == 1


@pytest.mark.anyio("asyncio")
async def test_error_statuses_and_bad_json_skip_the_addon() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "alpha.example.com":
            return httpx.Response(500, text="boom")
        if host == "beta.example.com":
            return httpx.Response(200, text="not json")
        return httpx.Response(200, json={"streams": "nope"})

    directory = FakeDirectory(
        [make_addon("alpha"), make_addon("beta"), make_addon("gamma")]
    )
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(), "key")

    assert not verdict.available
    assert verdict.reason is None


@pytest.mark.anyio("asyncio")
async def test_selected_addons_restrict_the_probe() -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(200, json=streams("Matrix.1080p"))

    directory = FakeDirectory([make_addon("alpha"), make_addon("beta")])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(), "key", selected_addon_ids=["beta"])

    assert hosts == ["beta.example.com"]
    assert verdict.stream_count == 1


@pytest.mark.anyio("asyncio")
async def test_evidence_is_capped_but_count_is_not() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json=streams(*[f"Matrix.Part{index}.1080p" for index in range(15)])
        )

    directory = FakeDirectory([make_addon("alpha")])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(), "key")

    assert verdict.stream_count == 15
    assert verdict.addons[0].stream_count == 15
    assert len(verdict.addons[0].streams) == 10


@pytest.mark.anyio("asyncio")
async def test_missing_imdb_id_short_circuits() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("No addon request expected")

    directory = FakeDirectory([make_addon("alpha")])
    probe, http_client = build_probe(directory, handler)
    async with http_client:
        verdict = await probe.probe(make_item(imdb_id=None, tmdb_id=None), "key")

    assert not verdict.available
    assert verdict.reason == NO_IMDB_ID
    assert directory.calls == []


@pytest.mark.anyio("asyncio")
async def test_addon_listing_failures_become_reasons() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("No addon request expected")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        resolver = ExternalIdResolver(FakeStore())

        empty = StreamProbe(FakeDirectory([]), resolver, http_client)
        verdict = await empty.probe(make_item(), "key")
        assert verdict.reason == NO_STREAM_ADDONS

        rejected = StreamProbe(
            FakeDirectory(error=AuthError("Session does not exist")), resolver, http_client
        )
        verdict = await rejected.probe(make_item(), "key")
        assert verdict.reason == "Failed to get addons: Session does not exist"

        offline = StreamProbe(
            FakeDirectory(error=NetworkError("Stremio API error: 502")), resolver, http_client
        )
        verdict = await offline.probe(make_item(), "key")
        assert not verdict.available
        assert verdict.reason == "Failed to get addons: Stremio API error: 502"


@pytest.mark.parametrize(
    "tmdb_reply",
    [
        {"text": "<html>oops</html>"},
        {"json": {"status_message": "x"}},
        {"json": ["not", "a", "mapping"]},
    ],
)
@pytest.mark.anyio("asyncio")
async def test_malformed_tmdb_reply_becomes_unavailable(tmdb_reply: dict[str, Any]) -> None:
    def tmdb_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, **tmdb_reply)

    def addon_handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("No addon request expected")

    settings = Settings(_env_file=None, TMDB_API_KEY="tmdb-key")
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(tmdb_handler), base_url="https://tmdb.example.com/3"
    ) as tmdb_http, httpx.AsyncClient(
        transport=httpx.MockTransport(addon_handler)
    ) as addon_http:
        store = FakeStore()
        resolver = ExternalIdResolver(store, tmdb_client=TMDBClient(settings, tmdb_http))
        directory = FakeDirectory([make_addon("alpha")])
        probe = StreamProbe(directory, resolver, addon_http)
        verdict = await probe.probe(make_item(imdb_id=None), "key")

    assert not verdict.available
    assert verdict.stream_count == 0
    assert verdict.reason == NO_IMDB_ID
    assert store.written == {}
