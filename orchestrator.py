"""
Extraction Orchestrator

Drives one extraction request for an ad: gathers the stored inputs, runs the
transcript and visual-description streams concurrently on worker threads,
persists each successful result and aggregates one outcome per stream.

Request lifecycle:
    START -> INPUTS_GATHERED -> STREAMS_RUNNING -> AGGREGATED -> DONE
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence

from config import Settings
from errors import DeadlineExceeded, ExtractionError, InputError, StorageError
from models import (
    ExtractionResponse,
    Keyframe,
    KeyframeMeta,
    StreamName,
    StreamOutcome,
    TranscriptResult,
    VisualResult,
)
from outcomes import OutcomeCollector
from request_context import RequestContext
from storage import ObjectStore, keyframe_prefix, transcript_result_key, visual_result_key
from transcript_stream import run_transcript
from visual_description_stream import run_visual_descriptions

logger = logging.getLogger(__name__)

TranscribeFn = Callable[[RequestContext, bytes, str], TranscriptResult]
DescribeFn = Callable[[RequestContext, Sequence[Keyframe], str], VisualResult]


class ExtractionState(str, Enum):
    START = "start"
    INPUTS_GATHERED = "inputs_gathered"
    STREAMS_RUNNING = "streams_running"
    AGGREGATED = "aggregated"
    DONE = "done"


@dataclass
class ExtractionInputs:
    video_bytes: bytes
    keyframes: List[Keyframe] = field(default_factory=list)


class ExtractionOrchestrator:
    """Runs extraction requests against one object store and one configuration"""

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        transcribe: Optional[TranscribeFn] = None,
        describe: Optional[DescribeFn] = None,
    ):
        """
        Initialize the orchestrator

        Args:
            settings: Process configuration (credentials, timeouts, provider endpoints)
            store: Object store holding inputs and receiving results
            transcribe: Transcript stream, defaults to the Deepgram implementation
            describe: Visual-description stream, defaults to the Gemini implementation
        """
        self.settings = settings
        self.store = store
        self._transcribe = transcribe or partial(
            _default_transcribe, settings=settings
        )
        self._describe = describe or partial(
            _default_describe, settings=settings
        )

    def extract(self, ad_id: str) -> ExtractionResponse:
        """
        Run both extraction streams for an ad

        Args:
            ad_id: Advertisement identifier

        Returns:
            ExtractionResponse with one outcome per stream

        Raises:
            InputError: ad_id is empty or the video cannot be read
        """
        if not ad_id or not ad_id.strip():
            raise InputError("ad_id is required")

        started = time.perf_counter()
        ctx = RequestContext(self.settings.extract_timeout_seconds)
        self._enter(ad_id, ExtractionState.START)

        inputs = self.gather_inputs(ctx, ad_id)
        self._enter(ad_id, ExtractionState.INPUTS_GATHERED)

        collector = OutcomeCollector()
        launches = self._plan_streams(ctx, ad_id, inputs, collector)
        self._enter(ad_id, ExtractionState.STREAMS_RUNNING)

        if launches:
            self._run_concurrently(ctx, ad_id, launches, collector)
        outcomes = collector.close()
        self._enter(ad_id, ExtractionState.AGGREGATED)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        response = ExtractionResponse(ad_id=ad_id, outcomes=outcomes, processing_time_ms=elapsed_ms)
        self._enter(ad_id, ExtractionState.DONE)

        logger.info(
            "Extraction for %s finished in %.0f ms: %s",
            ad_id, elapsed_ms,
            ", ".join(f"{o.stream_name.value}={o.status.value}" for o in outcomes),
        )
        return response

    # ------------------------
    # ---- Inputs ----
    # ------------------------

    def gather_inputs(self, ctx: RequestContext, ad_id: str) -> ExtractionInputs:
        """
        Fetch the video (mandatory) and keyframes (optional) for an ad

        Keyframes are only fetched when the visual stream is configured; any
        failure reading them degrades to an empty list. The keyframe fetch is
        bounded by keyframe_fetch_timeout_seconds as well as the request deadline.
        """
        try:
            ctx.check("download video")
            video_bytes = self.store.download_video(ad_id)
        except (StorageError, DeadlineExceeded) as e:
            raise InputError(f"download video: {e}") from e
        if not video_bytes:
            raise InputError(f"download video: ads/{ad_id}/video.mp4 is empty")

        keyframes: List[Keyframe] = []
        if self.settings.visual_enabled:
            keyframes = self.resolve_keyframes(
                ctx.bounded(self.settings.keyframe_fetch_timeout_seconds), ad_id)

        logger.info("Gathered inputs for %s: %d video bytes, %d keyframes",
                    ad_id, len(video_bytes), len(keyframes))
        return ExtractionInputs(video_bytes=video_bytes, keyframes=keyframes)

    def resolve_keyframes(self, ctx: RequestContext, ad_id: str) -> List[Keyframe]:
        """
        Load keyframe metadata and images, ordered by keyframe index

        Returns an empty list when the metadata or listing cannot be read, or
        when ctx runs out of time before every image is downloaded.
        """
        try:
            ctx.check("download keyframe metadata")
            metas = self.store.download_keyframe_metadata(ad_id)
        except (StorageError, DeadlineExceeded) as e:
            logger.warning("No keyframe metadata for %s: %s (visual stream will be skipped)", ad_id, e)
            return []

        prefix = keyframe_prefix(ad_id)
        try:
            ctx.check("list keyframes")
            listed = set(self.store.list_keys_with_prefix(prefix))
        except (StorageError, DeadlineExceeded) as e:
            logger.warning("Failed to list keyframes for %s: %s (visual stream will be skipped)", ad_id, e)
            return []

        wanted: List[KeyframeMeta] = []
        for meta in metas:
            if meta.r2_key.startswith(prefix) and meta.r2_key not in listed:
                logger.warning("Keyframe %d image %s not found for %s", meta.index, meta.r2_key, ad_id)
                continue
            wanted.append(meta)

        try:
            images = self.store.download_keyframe_images(wanted, ctx)
        except DeadlineExceeded as e:
            logger.warning("Keyframe download for %s ran out of time: %s (visual stream will be skipped)", ad_id, e)
            return []

        keyframes = [
            Keyframe(
                index=meta.index,
                frame_number=meta.frame_number,
                timestamp_sec=meta.timestamp_sec,
                image_bytes=images[meta.r2_key],
            )
            for meta in wanted
            if meta.r2_key in images
        ]
        keyframes.sort(key=lambda kf: kf.index)
        return keyframes

    # ------------------------
    # ---- Streams ----
    # ------------------------

    def _plan_streams(
        self,
        ctx: RequestContext,
        ad_id: str,
        inputs: ExtractionInputs,
        collector: OutcomeCollector,
    ) -> Dict[StreamName, Callable[[], StreamOutcome]]:
        """Record skipped streams and return the ones to launch"""
        launches: Dict[StreamName, Callable[[], StreamOutcome]] = {}

        if self.settings.transcript_enabled:
            launches[StreamName.TRANSCRIPT] = partial(self._transcript_stream, ctx, ad_id, inputs.video_bytes)
        else:
            collector.record(StreamOutcome.skipped(
                StreamName.TRANSCRIPT, "speech-recognition credential not configured"))

        if not self.settings.visual_enabled:
            collector.record(StreamOutcome.skipped(
                StreamName.VISUAL, "vision-language credential not configured"))
        elif not inputs.keyframes:
            collector.record(StreamOutcome.skipped(
                StreamName.VISUAL, "no keyframe images available"))
        else:
            launches[StreamName.VISUAL] = partial(self._visual_stream, ctx, ad_id, inputs.keyframes)

        return launches

    def _run_concurrently(
        self,
        ctx: RequestContext,
        ad_id: str,
        launches: Dict[StreamName, Callable[[], StreamOutcome]],
        collector: OutcomeCollector,
    ) -> None:
        # Not a `with` block: exiting it would join threads still running past the deadline
        executor = ThreadPoolExecutor(max_workers=len(launches), thread_name_prefix=f"extract-{ad_id}")
        try:
            futures: Dict[StreamName, Future] = {
                name: executor.submit(self._run_stream, name, run, ad_id, collector)
                for name, run in launches.items()
            }
            _, not_done = wait(futures.values(), timeout=ctx.remaining())

            if not_done:
                ctx.cancel()
                timeout = self.settings.extract_timeout_seconds
                for name, future in futures.items():
                    if future in not_done:
                        logger.error("%s stream for %s still running at the %.0fs deadline",
                                     name.value, ad_id, timeout)
                        collector.record(StreamOutcome.error(
                            name, f"{name.value} stream: deadline exceeded after {timeout:.0f}s"))

            # A worker that died before recording still owes an outcome
            for name, future in futures.items():
                if future.done() and not collector.has(name):
                    error = future.exception()
                    collector.record(StreamOutcome.error(name, f"{name.value} stream: {error}"))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _run_stream(
        self,
        name: StreamName,
        run: Callable[[], StreamOutcome],
        ad_id: str,
        collector: OutcomeCollector,
    ) -> None:
        started = time.perf_counter()
        logger.info("Starting %s stream for %s", name.value, ad_id)
        try:
            outcome = run()
        except ExtractionError as e:
            logger.error("%s stream failed for %s: %s", name.value, ad_id, e)
            outcome = StreamOutcome.error(name, str(e))
        except Exception as e:
            logger.exception("%s stream crashed for %s", name.value, ad_id)
            outcome = StreamOutcome.error(name, f"unexpected error: {e}")

        elapsed = time.perf_counter() - started
        if collector.record(outcome):
            logger.info("%s stream for %s: %s in %.2fs", name.value, ad_id, outcome.status.value, elapsed)
        else:
            logger.warning("%s stream for %s finished after the deadline, result discarded", name.value, ad_id)

    def _transcript_stream(self, ctx: RequestContext, ad_id: str, video_bytes: bytes) -> StreamOutcome:
        result = self._transcribe(ctx, video_bytes, self.settings.deepgram_api_key)

        key = transcript_result_key(ad_id)
        ctx.check("upload transcript")
        self.store.put_json(key, result)
        return StreamOutcome.success(StreamName.TRANSCRIPT, len(result.segments), key)

    def _visual_stream(self, ctx: RequestContext, ad_id: str, keyframes: Sequence[Keyframe]) -> StreamOutcome:
        result = self._describe(ctx, keyframes, self.settings.gemini_api_key)

        key = visual_result_key(ad_id)
        ctx.check("upload visual descriptions")
        self.store.put_json(key, result)
        return StreamOutcome.success(StreamName.VISUAL, len(result.frames), key)

    @staticmethod
    def _enter(ad_id: str, state: ExtractionState) -> None:
        logger.debug("Extraction %s -> %s", ad_id, state.value)


def _default_transcribe(ctx: RequestContext, video_bytes: bytes, api_key: str,
                        settings: Settings) -> TranscriptResult:
    return run_transcript(
        ctx,
        video_bytes,
        api_key,
        base_url=settings.deepgram_base_url,
        model=settings.deepgram_model,
        chunk_duration=settings.transcript_chunk_seconds,
        call_timeout=settings.provider_timeout_seconds,
    )


def _default_describe(ctx: RequestContext, keyframes: Sequence[Keyframe], api_key: str,
                      settings: Settings) -> VisualResult:
    return run_visual_descriptions(
        ctx,
        keyframes,
        api_key,
        base_url=settings.gemini_base_url,
        model=settings.gemini_model,
        call_timeout=settings.provider_timeout_seconds,
    )
