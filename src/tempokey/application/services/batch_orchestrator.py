"""Streaming tempo/key resolution for whole playlists.

Hey future me - this is the playlist view's engine. A playlist has 50-500 tracks, nobody
wants to wait for all of them, so results are pushed out one by one as FeatureEvents:

    cached   served straight from the cache (HIT or NEGATIVE)
    partial  first numbers of a track, more are coming (e.g. essentia done, librosa not)
    final    track is done, record is merged into the cache
    error    track failed (bad id, no preview, mismatch, analysis error)
    done     end of stream, with counts

The pipeline per stream:
1. validate ids, collapse duplicates
2. bulk cache lookup, servable rows go out as "cached" right away
3. claim every remaining id in the SingleFlight registry. Ids another stream (or the
   single-track path) is already computing are just awaited at the end
4. our own ids go in outer batches of analysis_batch_size: identity + cascade run
   resolve_chunk_size at a time, then ONE analysis batch is submitted and its NDJSON
   stream is merged into the cache line by line
5. before the next outer batch we wait until the consumer ACKed every event so far.
   A slow browser therefore slows the analysis down instead of piling up results
6. "done"

Backpressure lives in FeatureStream: bounded queue, and an event counts as acknowledged
once the consumer pulls the next one.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Coroutine, Sequence
from typing import Any

from tempokey.application.cache import TrackFeatureCache
from tempokey.application.services.audio_feature_service import (
    failure_record,
    outcome_record,
    provenance_record,
)
from tempokey.application.services.identifier_resolver import IdentifierResolver
from tempokey.application.services.preview_locator import PreviewLocator
from tempokey.application.services.single_flight import SingleFlight
from tempokey.config.settings import OrchestratorSettings
from tempokey.domain.entities import (
    FeatureEvent,
    FeatureEventType,
    PreviewResolution,
    TrackFeatures,
    TrackIdentity,
)
from tempokey.domain.exceptions import (
    AnalysisAbortedError,
    AnalysisServiceError,
    ConfigurationError,
    ValidationException,
)
from tempokey.domain.ports import IAnalysisClient
from tempokey.domain.value_objects import TrackId
from tempokey.infrastructure.integrations.analysis_client import parse_outcome
from tempokey.infrastructure.observability import log_operation

logger = logging.getLogger(__name__)

_END = object()


def _chunks(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


def _error_text(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


class FeatureStream:
    """Bounded, acknowledged feed of FeatureEvents.

    The producer starts on the first pull, so a stream can be registered (and a previous
    one for the same session aborted) before it claims any work.
    """

    def __init__(
        self,
        producer: Callable[["FeatureStream"], Coroutine[Any, Any, None]],
        maxsize: int = 64,
    ) -> None:
        self._producer = producer
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self._unacked = False
        self._finished = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_started(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run(self._producer(self)))

    async def _run(self, producer: Coroutine[Any, Any, None]) -> None:
        try:
            await producer
        except Exception as e:
            logger.exception("Feature stream producer failed")
            await self._queue.put(
                FeatureEvent(type=FeatureEventType.ERROR, error=_error_text(e))
            )
        await self._queue.put(_END)

    async def emit(self, event: FeatureEvent) -> None:
        """Producer side: suspends while the queue is full."""
        await self._queue.put(event)

    async def wait_acknowledged(self) -> None:
        """Producer side: wait until the consumer pulled past every emitted event."""
        await self._queue.join()

    def __aiter__(self) -> AsyncIterator[FeatureEvent]:
        return self

    async def __anext__(self) -> FeatureEvent:
        if self._unacked:
            self._queue.task_done()
            self._unacked = False
        if self._finished:
            raise StopAsyncIteration

        self._ensure_started()
        item = await self._queue.get()
        if item is _END:
            self._queue.task_done()
            self._finished = True
            raise StopAsyncIteration

        self._unacked = True
        return item

    async def aclose(self) -> None:
        """Stop the producer. Unsettled coalescing keys are rejected by the producer."""
        if self._closed:
            return
        self._closed = True

        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        # Wake up a consumer that may still be waiting on get()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._queue.put_nowait(_END)


class StreamSessionRegistry:
    """One open stream per session key, a new one supersedes the old."""

    def __init__(self) -> None:
        self._streams: dict[str, FeatureStream] = {}

    def __len__(self) -> int:
        return len(self._streams)

    async def open(self, session_key: str, stream: FeatureStream) -> FeatureStream:
        previous = self._streams.get(session_key)
        self._streams[session_key] = stream
        if previous is not None and previous is not stream:
            logger.info("Superseding feature stream for session %s", session_key)
            await previous.aclose()
        return stream

    def release(self, session_key: str, stream: FeatureStream) -> None:
        """Forget the stream, unless it was already superseded by a newer one."""
        if self._streams.get(session_key) is stream:
            del self._streams[session_key]

    async def close_all(self) -> None:
        streams = list(self._streams.values())
        self._streams.clear()
        for stream in streams:
            await stream.aclose()


class BatchOrchestrator:
    """Produces FeatureStreams for lists of track ids."""

    def __init__(
        self,
        resolver: IdentifierResolver,
        locator: PreviewLocator,
        analysis_client: IAnalysisClient,
        cache: TrackFeatureCache,
        single_flight: SingleFlight,
        settings: OrchestratorSettings,
        default_market: str = "us",
    ) -> None:
        self.resolver = resolver
        self.locator = locator
        self.analysis_client = analysis_client
        self.cache = cache
        self.single_flight = single_flight
        self.settings = settings
        self.default_market = default_market

    def stream(
        self,
        track_ids: Sequence[str],
        market: str | None = None,
        force: bool = False,
        clear_manual: bool = False,
    ) -> FeatureStream:
        """Stream features for the given tracks.

        force=True skips the cache reads (recompute). clear_manual additionally drops
        manual pins while merging the new values.
        """
        ids = list(track_ids)
        market = market or self.default_market
        return FeatureStream(
            lambda stream: self._produce(stream, ids, market, force, clear_manual),
            maxsize=self.settings.stream_queue_size,
        )

    async def _produce(
        self,
        stream: FeatureStream,
        track_ids: list[str],
        market: str,
        force: bool,
        clear_manual: bool,
    ) -> None:
        counts = {"requested": len(track_ids), "cached": 0, "computed": 0, "failed": 0}
        owned: set[str] = set()

        try:
            async with log_operation(
                logger,
                "features.stream",
                tracks=len(track_ids),
                market=market,
                force=force,
            ) as result:
                valid = await self._validate(stream, track_ids, counts)
                remaining = valid if force else await self._emit_cached(stream, valid, counts)

                waiting: list[tuple[str, asyncio.Future[Any]]] = []
                mine: list[str] = []
                for track_id in remaining:
                    future, owner = self.single_flight.acquire(track_id)
                    if owner:
                        owned.add(track_id)
                        mine.append(track_id)
                    else:
                        waiting.append((track_id, future))

                for batch in _chunks(mine, self.settings.analysis_batch_size):
                    await self._process_batch(
                        stream, list(batch), market, force, clear_manual, owned, counts
                    )
                    await stream.wait_acknowledged()

                await self._emit_joined(stream, waiting, counts)
                await stream.emit(
                    FeatureEvent(type=FeatureEventType.DONE, counts=dict(counts))
                )
                result.update(counts)
        finally:
            for track_id in owned:
                self.single_flight.reject(track_id, AnalysisAbortedError())

    async def _validate(
        self, stream: FeatureStream, track_ids: list[str], counts: dict[str, int]
    ) -> list[str]:
        valid: list[str] = []
        seen: set[str] = set()
        for raw in track_ids:
            try:
                track_id = TrackId.parse(raw).value
            except ValidationException as e:
                counts["failed"] += 1
                await stream.emit(
                    FeatureEvent(type=FeatureEventType.ERROR, track_id=raw, error=e.message)
                )
                continue
            if track_id not in seen:
                seen.add(track_id)
                valid.append(track_id)
        return valid

    async def _emit_cached(
        self, stream: FeatureStream, track_ids: list[str], counts: dict[str, int]
    ) -> list[str]:
        """Emit servable cache rows, return the ids that still need work."""
        remaining: list[str] = []
        for chunk in _chunks(track_ids, self.cache.settings.batch_lookup_limit):
            lookups = await self.cache.lookup_many(list(chunk))
            for track_id in chunk:
                lookup = lookups.get(track_id)
                if lookup is not None and lookup.servable and lookup.record is not None:
                    counts["cached"] += 1
                    await stream.emit(
                        FeatureEvent(
                            type=FeatureEventType.CACHED,
                            track_id=track_id,
                            features=lookup.record,
                        )
                    )
                else:
                    remaining.append(track_id)
        return remaining

    async def _emit_joined(
        self,
        stream: FeatureStream,
        waiting: list[tuple[str, asyncio.Future[Any]]],
        counts: dict[str, int],
    ) -> None:
        """Emit ids someone else computed, in the order they settle."""

        async def settle(track_id: str, future: asyncio.Future[Any]) -> FeatureEvent:
            try:
                record = await asyncio.shield(future)
            except Exception as e:
                return FeatureEvent(
                    type=FeatureEventType.ERROR, track_id=track_id, error=_error_text(e)
                )
            return FeatureEvent(
                type=FeatureEventType.FINAL, track_id=track_id, features=record
            )

        for pending in asyncio.as_completed([settle(tid, fut) for tid, fut in waiting]):
            event = await pending
            counts["failed" if event.type == FeatureEventType.ERROR else "computed"] += 1
            await stream.emit(event)

    async def _resolve_one(
        self, track_id: str, market: str, force: bool
    ) -> TrackFeatures | tuple[TrackIdentity, PreviewResolution]:
        identity = await self.resolver.resolve(TrackId(track_id))
        if not force and identity.isrc:
            lookup = await self.cache.lookup(track_id, identity.isrc)
            if lookup.servable and lookup.record is not None:
                return lookup.record
        return identity, await self.locator.locate(identity, market)

    # Hey future me - one outer batch. Everything in here must END with every id of the
    # batch settled in the SingleFlight registry (resolve or reject), otherwise waiters in
    # other streams hang until our finally-block aborts them.
    async def _process_batch(
        self,
        stream: FeatureStream,
        batch: list[str],
        market: str,
        force: bool,
        clear_manual: bool,
        owned: set[str],
        counts: dict[str, int],
    ) -> None:
        ready: list[tuple[TrackIdentity, PreviewResolution]] = []

        for chunk in _chunks(batch, self.settings.resolve_chunk_size):
            outcomes = await asyncio.gather(
                *(self._resolve_one(track_id, market, force) for track_id in chunk),
                return_exceptions=True,
            )
            for track_id, outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                    raise outcome
                if isinstance(outcome, Exception):
                    logger.warning("Resolution of %s failed: %s", track_id, outcome)
                    await self._fail(stream, track_id, None, outcome, owned, counts)
                elif isinstance(outcome, TrackFeatures):
                    counts["cached"] += 1
                    await self._settle(
                        stream, FeatureEventType.CACHED, track_id, outcome, owned
                    )
                else:
                    identity, resolution = outcome
                    if resolution.succeeded:
                        ready.append((identity, resolution))
                        continue
                    record = await self.cache.upsert(
                        provenance_record(identity, resolution), clear_manual=clear_manual
                    )
                    counts["failed"] += 1
                    await stream.emit(
                        FeatureEvent(
                            type=FeatureEventType.ERROR,
                            track_id=track_id,
                            features=record,
                            error=record.error,
                        )
                    )
                    self.single_flight.resolve(track_id, record)
                    owned.discard(track_id)

        if ready:
            await self._analyze_batch(stream, ready, clear_manual, owned, counts)

    async def _analyze_batch(
        self,
        stream: FeatureStream,
        ready: list[tuple[TrackIdentity, PreviewResolution]],
        clear_manual: bool,
        owned: set[str],
        counts: dict[str, int],
    ) -> None:
        contexts = {
            identity.track_id.value: (identity, resolution) for identity, resolution in ready
        }
        partial: dict[str, TrackFeatures] = {}
        settled: set[str] = set()
        failure: AnalysisServiceError | None = None

        try:
            job = await self.analysis_client.submit_batch(
                [resolution.successful_url or "" for _, resolution in ready]
            )
            job.index_map = {
                index: identity.track_id.value for index, (identity, _) in enumerate(ready)
            }

            async for line in self.analysis_client.stream_batch(job.batch_id):
                if line.type != "result" or line.index is None:
                    continue
                track_id = job.track_for(line.index)
                if track_id is None or track_id in settled:
                    logger.debug("Ignoring analysis line for index %s", line.index)
                    continue
                identity, resolution = contexts[track_id]

                try:
                    outcome = parse_outcome(line.fields)
                except AnalysisServiceError as e:
                    settled.add(track_id)
                    partial.pop(track_id, None)
                    await self._fail(
                        stream, track_id, (identity, resolution), e, owned, counts, clear_manual
                    )
                    continue

                record = await self.cache.upsert(
                    outcome_record(identity, resolution, outcome), clear_manual=clear_manual
                )
                if line.final:
                    settled.add(track_id)
                    partial.pop(track_id, None)
                    counts["computed"] += 1
                    await self._settle(stream, FeatureEventType.FINAL, track_id, record, owned)
                else:
                    partial[track_id] = record
                    await stream.emit(
                        FeatureEvent(
                            type=FeatureEventType.PARTIAL, track_id=track_id, features=record
                        )
                    )
            job.status = "completed"
        except (AnalysisServiceError, ConfigurationError) as e:
            failure = (
                e
                if isinstance(e, AnalysisServiceError)
                else AnalysisServiceError(e.message)
            )
            logger.warning("Analysis batch failed: %s", failure.message)

        for track_id, (identity, resolution) in contexts.items():
            if track_id in settled:
                continue
            if track_id in partial:
                counts["computed"] += 1
                await self._settle(
                    stream, FeatureEventType.FINAL, track_id, partial[track_id], owned
                )
                continue
            error = failure or AnalysisServiceError("No result returned for track")
            await self._fail(
                stream, track_id, (identity, resolution), error, owned, counts, clear_manual
            )

    async def _settle(
        self,
        stream: FeatureStream,
        event_type: FeatureEventType,
        track_id: str,
        record: TrackFeatures,
        owned: set[str],
    ) -> None:
        await stream.emit(FeatureEvent(type=event_type, track_id=track_id, features=record))
        self.single_flight.resolve(track_id, record)
        owned.discard(track_id)

    async def _fail(
        self,
        stream: FeatureStream,
        track_id: str,
        context: tuple[TrackIdentity, PreviewResolution] | None,
        error: Exception,
        owned: set[str],
        counts: dict[str, int],
        clear_manual: bool = False,
    ) -> None:
        """Persist (when we know enough about the track), emit error, reject the key."""
        record = None
        if context is not None:
            identity, resolution = context
            record = await self.cache.upsert(
                failure_record(identity, resolution, error),
                clear_manual=clear_manual,
            )
        counts["failed"] += 1
        await stream.emit(
            FeatureEvent(
                type=FeatureEventType.ERROR,
                track_id=track_id,
                features=record,
                error=_error_text(error),
            )
        )
        self.single_flight.reject(track_id, error)
        owned.discard(track_id)
