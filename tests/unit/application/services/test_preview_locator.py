"""Tests for the preview provider cascade."""

import asyncio
from collections.abc import Sequence

import httpx
import pytest

from tempokey.application.services.preview_locator import (
    CATALOG_PREVIEW_SOURCE,
    PreviewLocator,
)
from tempokey.domain.entities import PreviewFailureReason, TrackIdentity
from tempokey.domain.ports import IPreviewProvider, PreviewCandidate
from tempokey.domain.value_objects import TrackId

ISRC = "GBARL9300135"
OTHER_ISRC = "USRC17607839"


class FakeProvider(IPreviewProvider):
    """Provider returning canned candidates (or raising)."""

    def __init__(
        self,
        name: str,
        candidates: Sequence[PreviewCandidate] = (),
        *,
        verifies_identity: bool = False,
        error: BaseException | None = None,
        needs_isrc: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.verifies_identity = verifies_identity
        self.candidates = list(candidates)
        self.error = error
        self.needs_isrc = needs_isrc
        self.delay = delay
        self.calls = 0

    def applies_to(self, identity: TrackIdentity) -> bool:
        return bool(identity.isrc) or not self.needs_isrc

    async def find_candidates(
        self, identity: TrackIdentity, market: str
    ) -> list[PreviewCandidate]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.candidates


@pytest.fixture
def identity() -> TrackIdentity:
    return TrackIdentity(
        track_id=TrackId("4uLU6hMCjMI75M1A2tKUQC"),
        title="Never Gonna Give You Up",
        artists=("Rick Astley",),
        isrc=ISRC,
    )


class TestPreviewLocator:
    """Test PreviewLocator.locate()."""

    async def test_isrc_provider_is_trusted(self, identity: TrackIdentity) -> None:
        deezer_isrc = FakeProvider(
            "deezer_isrc",
            [PreviewCandidate(url="https://deezer/p1.mp3")],
            verifies_identity=True,
        )
        itunes = FakeProvider("itunes_search")
        locator = PreviewLocator([deezer_isrc, itunes])

        resolution = await locator.locate(identity, "us")

        assert resolution.succeeded is True
        assert resolution.url == "https://deezer/p1.mp3"
        assert resolution.provider == "deezer_isrc"
        assert [a.successful for a in resolution.attempts] == [True]
        assert itunes.calls == 0

    async def test_search_candidate_with_matching_isrc_accepted(
        self, identity: TrackIdentity
    ) -> None:
        itunes = FakeProvider(
            "itunes_search",
            [
                PreviewCandidate(url="https://itunes/nomatch.m4a"),
                PreviewCandidate(url="https://itunes/ok.m4a", isrc=ISRC.lower()),
            ],
        )
        locator = PreviewLocator([FakeProvider("deezer_isrc", verifies_identity=True), itunes])

        resolution = await locator.locate(identity, "us")

        assert resolution.url == "https://itunes/ok.m4a"
        assert resolution.provider == "itunes_search"
        # the candidate without an ISRC was recorded but skipped
        assert [(a.url, a.successful) for a in resolution.attempts] == [
            ("https://itunes/nomatch.m4a", False),
            ("https://itunes/ok.m4a", True),
        ]

    async def test_mismatch_stops_cascade(self, identity: TrackIdentity) -> None:
        itunes = FakeProvider(
            "itunes_search", [PreviewCandidate(url="https://itunes/cover.m4a", isrc=OTHER_ISRC)]
        )
        deezer_search = FakeProvider(
            "deezer_search", [PreviewCandidate(url="https://deezer/ok.mp3", isrc=ISRC)]
        )
        locator = PreviewLocator([itunes, deezer_search])

        resolution = await locator.locate(identity, "us")

        assert resolution.succeeded is False
        assert resolution.identity_mismatch is True
        assert resolution.provider == "itunes_search"
        assert resolution.successful_url is None
        assert resolution.failure_reason == PreviewFailureReason.IDENTITY_MISMATCH
        assert deezer_search.calls == 0
        assert resolution.attempts[0].isrc == OTHER_ISRC

    async def test_unverifiable_candidates_fall_through(self, identity: TrackIdentity) -> None:
        itunes = FakeProvider("itunes_search", [PreviewCandidate(url="https://itunes/x.m4a")])
        deezer_search = FakeProvider(
            "deezer_search", [PreviewCandidate(url="https://deezer/ok.mp3", isrc=ISRC)]
        )
        locator = PreviewLocator([itunes, deezer_search])

        resolution = await locator.locate(identity, "us")

        assert resolution.provider == "deezer_search"
        assert len(resolution.attempts) == 2

    async def test_without_isrc_first_candidate_wins(self, identity: TrackIdentity) -> None:
        no_isrc = TrackIdentity(track_id=identity.track_id, title="Song", artists=("A",))
        deezer_isrc = FakeProvider("deezer_isrc", verifies_identity=True, needs_isrc=True)
        itunes = FakeProvider("itunes_search", [PreviewCandidate(url="https://itunes/x.m4a")])
        locator = PreviewLocator([deezer_isrc, itunes])

        resolution = await locator.locate(no_isrc, "us")

        assert resolution.url == "https://itunes/x.m4a"
        assert deezer_isrc.calls == 0

    async def test_provider_errors_are_skipped(self, identity: TrackIdentity) -> None:
        broken = FakeProvider("deezer_isrc", error=httpx.ConnectError("boom"))
        itunes = FakeProvider(
            "itunes_search", [PreviewCandidate(url="https://itunes/ok.m4a", isrc=ISRC)]
        )
        locator = PreviewLocator([broken, itunes])

        resolution = await locator.locate(identity, "us")

        assert resolution.provider == "itunes_search"

    async def test_slow_provider_times_out(self, identity: TrackIdentity) -> None:
        slow = FakeProvider("deezer_isrc", delay=1.0)
        locator = PreviewLocator([slow], provider_timeout=0.01)

        resolution = await locator.locate(identity, "us")

        assert resolution.failure_reason == PreviewFailureReason.PROVIDER_ERROR

    async def test_all_providers_failing_is_provider_error(self, identity: TrackIdentity) -> None:
        locator = PreviewLocator(
            [
                FakeProvider("deezer_isrc", error=httpx.ReadTimeout("slow")),
                FakeProvider("itunes_search", error=ValueError("bad json")),
            ]
        )

        resolution = await locator.locate(identity, "us")

        assert resolution.failure_reason == PreviewFailureReason.PROVIDER_ERROR

    async def test_nothing_found_is_no_candidate(self, identity: TrackIdentity) -> None:
        locator = PreviewLocator(
            [
                FakeProvider("deezer_isrc", error=httpx.ReadTimeout("slow")),
                FakeProvider("itunes_search"),
            ]
        )

        resolution = await locator.locate(identity, "us")

        assert resolution.failure_reason == PreviewFailureReason.NO_CANDIDATE
        assert resolution.error_message() is not None

    async def test_catalog_preview_is_last_resort(self, identity: TrackIdentity) -> None:
        with_preview = TrackIdentity(
            track_id=identity.track_id,
            title=identity.title,
            artists=identity.artists,
            isrc=ISRC,
            preview_url="https://p.scdn.co/mp3-preview/abc",
        )
        locator = PreviewLocator([FakeProvider("itunes_search")])

        resolution = await locator.locate(with_preview, "us")

        assert resolution.succeeded is True
        assert resolution.provider == CATALOG_PREVIEW_SOURCE
        assert resolution.attempts[-1].successful is True

    async def test_catalog_preview_not_used_after_mismatch(
        self, identity: TrackIdentity
    ) -> None:
        with_preview = TrackIdentity(
            track_id=identity.track_id,
            title=identity.title,
            isrc=ISRC,
            preview_url="https://p.scdn.co/mp3-preview/abc",
        )
        itunes = FakeProvider(
            "itunes_search", [PreviewCandidate(url="https://itunes/cover.m4a", isrc=OTHER_ISRC)]
        )

        resolution = await PreviewLocator([itunes]).locate(with_preview, "us")

        assert resolution.identity_mismatch is True

    def test_provider_names(self) -> None:
        locator = PreviewLocator([FakeProvider("a"), FakeProvider("b")])

        assert locator.provider_names == ["a", "b"]
