"""HTTP client for the external tempo/key analysis service.

Hey future me - this service is where Essentia and Librosa actually run. We only speak its
HTTP contract:

    POST /analyze/batch   {urls, max_confidence, debug_level}  -> {batch_id}
    GET  /batch/{id}      -> {status, processed, total, results: {"0": {...}, ...}}
    GET  /stream/{id}     -> NDJSON, one JSON object per line:
                             {"type": "result", "index": 3, "bpm_essentia": ..., "final": true}
                             {"type": "done", "count": 20}
                             {"type": "error", "message": "..."}
    GET  /health          -> "ok"

Every request carries "Authorization: Bearer <identity token>" where the token is scoped to
the service URL (the audience). Results are keyed by the submission INDEX, mapping them
back to tracks is the caller's job (see BatchJob.index_map).

No retries in here! A timeout or a 5xx raises AnalysisServiceError and the caller decides.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from tempokey.config.settings import AnalysisServiceSettings
from tempokey.domain.entities import AlgorithmOutcome, AnalysisOutcome, BatchJob
from tempokey.domain.exceptions import AnalysisServiceError, ConfigurationError
from tempokey.domain.ports import IAnalysisClient, IIdentityTokenProvider, StreamLine

logger = logging.getLogger(__name__)

# (AlgorithmOutcome attribute, wire field prefix)
_WIRE_FIELDS: tuple[tuple[str, str], ...] = (
    ("tempo", "bpm"),
    ("tempo_raw", "bpm_raw"),
    ("tempo_confidence", "bpm_confidence"),
    ("key", "key"),
    ("scale", "scale"),
    ("key_confidence", "keyscale_confidence"),
)
_NUMERIC_ATTRS = {"tempo", "tempo_raw", "tempo_confidence", "key_confidence"}


def _parse_algorithm(fields: dict[str, Any], suffix: str) -> AlgorithmOutcome | None:
    values: dict[str, Any] = {}
    for attr, prefix in _WIRE_FIELDS:
        raw = fields.get(f"{prefix}_{suffix}")
        if raw is None or raw == "":
            values[attr] = None
        elif attr in _NUMERIC_ATTRS:
            try:
                values[attr] = float(raw)
            except (TypeError, ValueError) as e:
                raise AnalysisServiceError(
                    f"Malformed {prefix}_{suffix} value from analysis service: {raw!r}"
                ) from e
        else:
            values[attr] = str(raw)
    outcome = AlgorithmOutcome(**values)
    return None if outcome.is_empty else outcome


def parse_outcome(fields: dict[str, Any]) -> AnalysisOutcome:
    """Build an AnalysisOutcome from one result object of the service.

    An algorithm that produced neither tempo nor key is reported as absent.

    Raises:
        AnalysisServiceError: a numeric field isn't a number
    """
    if not isinstance(fields, dict):
        raise AnalysisServiceError("Malformed analysis result: expected an object")
    return AnalysisOutcome(
        essentia=_parse_algorithm(fields, "essentia"),
        librosa=_parse_algorithm(fields, "librosa"),
        debug_txt=fields.get("debug_txt"),
        error=fields.get("error"),
    )


def parse_stream_line(line: str) -> StreamLine | None:
    """Parse one NDJSON line, None for blank or unparseable lines.

    Lines without "type" but with an "index" are results (older service versions).
    A result without "final" is a partial result - more may follow for the same index.
    """
    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed analysis stream line: %.200s", text)
        return None
    if not isinstance(data, dict):
        return None

    line_type = data.get("type")
    if line_type is None and "index" in data:
        line_type = "result"

    if line_type == "result":
        try:
            index = int(data["index"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Analysis stream result without usable index: %.200s", text)
            return None
        return StreamLine(
            type="result", index=index, fields=data, final=bool(data.get("final", False))
        )
    if line_type == "done":
        count = data.get("count")
        return StreamLine(type="done", count=int(count) if count is not None else None)
    if line_type == "error":
        return StreamLine(type="error", message=str(data.get("message", "unknown error")))

    logger.debug("Ignoring analysis stream line of type %r", line_type)
    return None


class AnalysisServiceClient(IAnalysisClient):
    """Client for the batch analysis service."""

    def __init__(
        self,
        settings: AnalysisServiceSettings,
        token_provider: IIdentityTokenProvider,
    ) -> None:
        self.settings = settings
        self._token_provider = token_provider
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        if not self.settings.url:
            raise ConfigurationError(
                "Analysis service URL is not configured. Set ANALYSIS_URL."
            )
        return self.settings.url

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.settings.request_timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _headers(self) -> dict[str, str]:
        token = await self._token_provider.get_token(self.base_url)
        return {"Authorization": f"Bearer {token}"}

    async def _request_json(
        self, method: str, path: str, json_body: dict[str, Any] | None = None
    ) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(
                method, path, json=json_body, headers=await self._headers()
            )
        except httpx.TimeoutException as e:
            raise AnalysisServiceError(f"Analysis service timed out on {path}") from e
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"Analysis service unreachable: {e}") from e

        if response.status_code >= 400:
            raise AnalysisServiceError(
                f"Analysis service returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise AnalysisServiceError(
                f"Analysis service returned non-JSON body on {path}"
            ) from e

    async def submit_batch(self, urls: Sequence[str]) -> BatchJob:
        """Submit URLs for analysis, returns the pending job.

        Raises:
            AnalysisServiceError: non-2xx or no batch_id in the answer
        """
        if not urls:
            raise ValueError("Cannot submit an empty analysis batch")

        payload = await self._request_json(
            "POST",
            "/analyze/batch",
            {
                "urls": list(urls),
                "max_confidence": self.settings.max_confidence,
                "debug_level": self.settings.debug_level,
            },
        )
        batch_id = payload.get("batch_id") if isinstance(payload, dict) else None
        if not batch_id:
            raise AnalysisServiceError("Analysis service response missing batch_id")

        logger.info(
            "Submitted analysis batch", extra={"batch_id": batch_id, "urls": len(urls)}
        )
        return BatchJob(batch_id=str(batch_id), urls=list(urls))

    async def get_batch_status(self, batch_id: str) -> dict[str, Any]:
        payload = await self._request_json("GET", f"/batch/{batch_id}")
        if not isinstance(payload, dict) or "status" not in payload:
            raise AnalysisServiceError(f"Malformed status for batch {batch_id}")
        return payload

    # Hey future me, this is the SYNCHRONOUS path used for one track at a time. Submit a
    # batch of one, then poll every poll_interval until status == "completed". A "failed"
    # status or the hard timeout ends it with AnalysisServiceError - no resubmission here,
    # the next explicit recompute will try again.
    async def analyze_url(self, url: str) -> AnalysisOutcome:
        """Analyse one preview URL and wait for the result."""
        job = await self.submit_batch([url])
        deadline = time.monotonic() + self.settings.timeout

        while True:
            status = await self.get_batch_status(job.batch_id)
            state = status.get("status")

            if state == "completed":
                job.status = "completed"
                results = status.get("results") or {}
                fields = results.get("0", results.get(0)) if isinstance(results, dict) else None
                if fields is None:
                    raise AnalysisServiceError(
                        f"Analysis batch {job.batch_id} completed without a result"
                    )
                outcome = parse_outcome(fields)
                if outcome.error and outcome.essentia is None and outcome.librosa is None:
                    raise AnalysisServiceError(f"Analysis failed: {outcome.error}")
                return outcome

            if state in ("failed", "error"):
                job.status = "failed"
                raise AnalysisServiceError(
                    f"Analysis batch {job.batch_id} failed: {status.get('error', 'unknown')}"
                )

            if time.monotonic() >= deadline:
                raise AnalysisServiceError(
                    f"Analysis batch {job.batch_id} timed out after "
                    f"{self.settings.timeout:.0f}s"
                )

            await asyncio.sleep(self.settings.poll_interval)

    async def stream_batch(self, batch_id: str) -> AsyncIterator[StreamLine]:
        """Yield result lines of a submitted batch as the service emits them.

        Stops after the "done" line (or when the server closes the stream).

        Raises:
            AnalysisServiceError: non-2xx, transport failure or an "error" line
        """
        client = await self._get_client()
        headers = await self._headers()
        try:
            async with client.stream(
                "GET",
                f"/stream/{batch_id}",
                headers=headers,
                timeout=httpx.Timeout(self.settings.request_timeout, read=self.settings.timeout),
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode(errors="replace")
                    raise AnalysisServiceError(
                        f"Analysis stream returned {response.status_code}: {body[:200]}",
                        status_code=response.status_code,
                    )

                async for raw_line in response.aiter_lines():
                    line = parse_stream_line(raw_line)
                    if line is None:
                        continue
                    if line.type == "error":
                        raise AnalysisServiceError(
                            f"Analysis stream error: {line.message}"
                        )
                    yield line
                    if line.type == "done":
                        return
        except httpx.TimeoutException as e:
            raise AnalysisServiceError(
                f"Analysis stream for batch {batch_id} timed out"
            ) from e
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"Analysis stream interrupted: {e}") from e

    async def health(self) -> bool:
        """True when GET /health answers 2xx with "ok" in the body."""
        client = await self._get_client()
        try:
            response = await client.get("/health", headers=await self._headers())
        except httpx.HTTPError as e:
            logger.warning("Analysis service health check failed: %s", e)
            return False
        return response.is_success and "ok" in response.text.lower()

    async def __aenter__(self) -> "AnalysisServiceClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
