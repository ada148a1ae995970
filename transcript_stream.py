"""
Transcript Stream

Sends the raw ad video to the Deepgram pre-recorded API in a single request
and turns the response into transcript segments.
"""

import logging
from typing import Optional

import requests
from pydantic import ValidationError

from config import DEEPGRAM_BASE_URL, DEEPGRAM_MODEL, PROVIDER_TIMEOUT_SECONDS
from errors import ConfigurationError, DeadlineExceeded, DecodeError, ProviderError
from models import SpeechRecognitionResponse, TranscriptResult
from request_context import RequestContext
from transcript_segmenter import DEFAULT_CHUNK_DURATION, segment_transcript

logger = logging.getLogger(__name__)

LISTEN_PARAMS = {
    "smart_format": "true",
    "utterances": "true",
    "punctuate": "true",
}
VIDEO_CONTENT_TYPE = "video/mp4"


def run_transcript(
    ctx: RequestContext,
    video_bytes: bytes,
    api_key: str,
    base_url: str = DEEPGRAM_BASE_URL,
    model: str = DEEPGRAM_MODEL,
    chunk_duration: float = DEFAULT_CHUNK_DURATION,
    call_timeout: Optional[float] = PROVIDER_TIMEOUT_SECONDS,
) -> TranscriptResult:
    """
    Transcribe a video into timestamped segments

    Args:
        ctx: Request context bounding the provider call
        video_bytes: Raw video container bytes
        api_key: Deepgram API key
        base_url: Provider base URL
        model: Deepgram model name
        chunk_duration: Target chunk length when only word timings are available
        call_timeout: Upper bound for the HTTP call

    Returns:
        TranscriptResult (possibly with no segments)

    Raises:
        ProviderError: Transport failure or non-200 response
        DecodeError: Response body is not a valid transcription result
    """
    if not api_key:
        raise ConfigurationError("speech-recognition API key is required")

    url = f"{base_url.rstrip('/')}/v1/listen"
    params = dict(LISTEN_PARAMS, model=model)
    headers = {
        "Authorization": f"Token {api_key}",
        "Content-Type": VIDEO_CONTENT_TYPE,
    }

    logger.info("Sending %d bytes of video to Deepgram (%s)", len(video_bytes), model)
    timeout = ctx.timeout_for("deepgram request", cap=call_timeout)
    try:
        response = requests.post(url, params=params, headers=headers, data=video_bytes, timeout=timeout)
    except requests.Timeout as e:
        if ctx.expired():
            raise DeadlineExceeded("deepgram request: deadline exceeded") from e
        raise ProviderError(f"deepgram request: {e}") from e
    except requests.RequestException as e:
        raise ProviderError(f"deepgram request: {e}") from e

    if response.status_code != 200:
        raise ProviderError(
            f"deepgram returned {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        decoded = SpeechRecognitionResponse.model_validate(response.json())
        segments = segment_transcript(decoded, chunk_duration)
    except (ValueError, ValidationError) as e:
        raise DecodeError(f"decode deepgram response: {e}", status_code=response.status_code) from e

    logger.info("Deepgram transcription produced %d segments", len(segments))
    return TranscriptResult(segments=segments)
