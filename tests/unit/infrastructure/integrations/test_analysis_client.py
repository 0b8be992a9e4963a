"""Tests for the analysis service client and its wire parsing."""

import json
from collections.abc import Callable

import httpx
import pytest

from tempokey.config import AnalysisServiceSettings
from tempokey.domain.exceptions import AnalysisServiceError, ConfigurationError
from tempokey.infrastructure.integrations.analysis_client import (
    AnalysisServiceClient,
    parse_outcome,
    parse_stream_line,
)
from tempokey.infrastructure.integrations.identity_token import StaticIdentityTokenProvider

BASE_URL = "https://analysis.example.com"

RESULT_FIELDS = {
    "bpm_essentia": 113.2,
    "bpm_confidence_essentia": "0.8",
    "key_essentia": "A",
    "scale_essentia": "major",
    "bpm_librosa": 112.3,
    "debug_txt": "trace",
}


def _client(
    handler: Callable[[httpx.Request], httpx.Response], **settings: object
) -> AnalysisServiceClient:
    client = AnalysisServiceClient(
        AnalysisServiceSettings(url=BASE_URL, poll_interval=0.001, **settings),
        StaticIdentityTokenProvider("secret-token"),
    )
    client._client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return client


class TestParsing:
    """Test result and NDJSON line parsing."""

    def test_parse_outcome(self) -> None:
        outcome = parse_outcome(RESULT_FIELDS)

        assert outcome.essentia is not None
        assert outcome.essentia.tempo == 113.2
        assert outcome.essentia.tempo_confidence == 0.8
        assert outcome.essentia.scale == "major"
        assert outcome.librosa is not None
        assert outcome.librosa.key is None
        assert outcome.debug_txt == "trace"

    def test_empty_algorithm_is_absent(self) -> None:
        outcome = parse_outcome({"bpm_essentia": 90, "bpm_librosa": "", "error": "librosa crashed"})

        assert outcome.librosa is None
        assert outcome.error == "librosa crashed"

    def test_malformed_number_raises(self) -> None:
        with pytest.raises(AnalysisServiceError):
            parse_outcome({"bpm_essentia": "fast"})

    def test_result_line_defaults_to_partial(self) -> None:
        line = parse_stream_line(json.dumps({"type": "result", "index": "2", "bpm_essentia": 1}))

        assert line is not None
        assert line.index == 2
        assert line.final is False

    def test_untyped_line_with_index_is_result(self) -> None:
        line = parse_stream_line(json.dumps({"index": 0, "final": True}))

        assert line is not None
        assert line.type == "result"
        assert line.final is True

    def test_done_and_error_lines(self) -> None:
        done = parse_stream_line('{"type": "done", "count": 3}')
        error = parse_stream_line('{"type": "error", "message": "worker died"}')

        assert done is not None and done.count == 3
        assert error is not None and error.message == "worker died"

    @pytest.mark.parametrize(
        "raw", ["", "   ", "not json", "[1, 2]", '{"type": "result"}', '{"type": "progress"}']
    )
    def test_unusable_lines_are_skipped(self, raw: str) -> None:
        assert parse_stream_line(raw) is None


class TestAnalysisServiceClient:
    """Test the HTTP contract."""

    async def test_submit_batch(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"batch_id": "b-1"})

        client = _client(handler, max_confidence=0.5)

        job = await client.submit_batch(["https://a.mp3", "https://b.mp3"])

        assert job.batch_id == "b-1"
        assert job.urls == ["https://a.mp3", "https://b.mp3"]
        assert seen[0].url.path == "/analyze/batch"
        assert seen[0].headers["Authorization"] == "Bearer secret-token"
        body = json.loads(seen[0].content)
        assert body["urls"] == ["https://a.mp3", "https://b.mp3"]
        assert body["max_confidence"] == 0.5
        await client.close()

    async def test_submit_empty_batch_rejected(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ValueError):
            await client.submit_batch([])

    async def test_missing_batch_id_raises(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"status": "queued"}))

        with pytest.raises(AnalysisServiceError):
            await client.submit_batch(["https://a.mp3"])

    async def test_http_error_carries_status(self) -> None:
        client = _client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(AnalysisServiceError) as exc_info:
            await client.submit_batch(["https://a.mp3"])

        assert exc_info.value.status_code == 500

    async def test_analyze_url_polls_until_completed(self) -> None:
        polls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal polls
            if request.method == "POST":
                return httpx.Response(200, json={"batch_id": "b-1"})
            polls += 1
            if polls < 3:
                return httpx.Response(200, json={"status": "processing"})
            return httpx.Response(200, json={"status": "completed", "results": {"0": RESULT_FIELDS}})

        client = _client(handler)

        outcome = await client.analyze_url("https://a.mp3")

        assert polls == 3
        assert outcome.essentia is not None and outcome.essentia.tempo == 113.2

    async def test_analyze_url_failed_batch(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"batch_id": "b-1"})
            return httpx.Response(200, json={"status": "failed", "error": "decode error"})

        with pytest.raises(AnalysisServiceError, match="decode error"):
            await _client(handler).analyze_url("https://a.mp3")

    async def test_analyze_url_result_with_only_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"batch_id": "b-1"})
            return httpx.Response(
                200, json={"status": "completed", "results": {"0": {"error": "no audio"}}}
            )

        with pytest.raises(AnalysisServiceError, match="no audio"):
            await _client(handler).analyze_url("https://a.mp3")

    async def test_analyze_url_times_out(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"batch_id": "b-1"})
            return httpx.Response(200, json={"status": "processing"})

        client = _client(handler, timeout=0.01)

        with pytest.raises(AnalysisServiceError, match="timed out"):
            await client.analyze_url("https://a.mp3")

    async def test_stream_batch(self) -> None:
        lines = [
            {"type": "result", "index": 1, "bpm_essentia": 100, "final": False},
            {"type": "result", "index": 1, "bpm_librosa": 101, "final": True},
            {"type": "done", "count": 1},
            {"type": "result", "index": 9, "final": True},
        ]
        body = "\n".join(json.dumps(line) for line in lines) + "\n\n"

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/stream/b-1"
            return httpx.Response(200, text=body)

        received = [line async for line in _client(handler).stream_batch("b-1")]

        assert [(line.type, line.index, line.final) for line in received] == [
            ("result", 1, False),
            ("result", 1, True),
            ("done", None, True),
        ]

    async def test_stream_error_line_raises(self) -> None:
        body = '{"type": "result", "index": 0, "final": true}\n{"type": "error", "message": "oom"}\n'
        client = _client(lambda request: httpx.Response(200, text=body))

        with pytest.raises(AnalysisServiceError, match="oom"):
            async for _ in client.stream_batch("b-1"):
                pass

    async def test_stream_http_error_raises(self) -> None:
        client = _client(lambda request: httpx.Response(404, text="unknown batch"))

        with pytest.raises(AnalysisServiceError) as exc_info:
            async for _ in client.stream_batch("b-1"):
                pass

        assert exc_info.value.status_code == 404

    async def test_health(self) -> None:
        assert await _client(lambda request: httpx.Response(200, text="OK")).health() is True
        assert await _client(lambda request: httpx.Response(503, text="ok")).health() is False

    async def test_unconfigured_url(self) -> None:
        client = AnalysisServiceClient(
            AnalysisServiceSettings(url=""), StaticIdentityTokenProvider("token")
        )

        with pytest.raises(ConfigurationError):
            await client.health()

    async def test_missing_token(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"batch_id": "b"}))
        client._token_provider = StaticIdentityTokenProvider("  ")

        with pytest.raises(ConfigurationError):
            await client.submit_batch(["https://a.mp3"])
