"""
Visual Description Stream

Describes each keyframe of an ad with the Gemini vision model. Frames are
processed strictly in order because every prompt carries the previous frame's
description as narrative context.
"""

import base64
import logging
from typing import Callable, List, Optional, Sequence

import requests
from pydantic import BaseModel, Field, ValidationError

from config import GEMINI_BASE_URL, GEMINI_MODEL, PROVIDER_TIMEOUT_SECONDS
from errors import ConfigurationError, DeadlineExceeded, DecodeError, ExtractionError, ProviderError
from models import FrameDescription, Keyframe, VisualResult
from request_context import RequestContext

logger = logging.getLogger(__name__)

FIRST_FRAME_CONTEXT = "This is the first frame of the ad."
IMAGE_MIME_TYPE = "image/jpeg"

MOTION_VOCABULARY = [
    "cut", "zoom", "pan", "handheld", "slow motion", "fast cut",
    "tracking shot", "static shot", "dolly", "whip pan",
]

PROMPT_TEMPLATE = """Analyze this frame from a video advertisement.
Previous frame context: {previous_description}
Timestamp: {timestamp:.1f}s

Describe in 2-3 sentences covering:
1. What is happening visually (people, product, setting, action)
2. Camera movement and shot type (close-up, wide shot, zoom in, pan, cut, handheld shake, tracking)
3. Emotional tone, color palette, pacing feel
4. Any motion blur, fast cuts, slow motion, or speed ramp effects

Be specific and concrete. Use explicit motion vocabulary: {vocabulary}."""


# ---- Gemini generateContent response ----

class _Part(BaseModel):
    text: str = ""


class _Content(BaseModel):
    parts: List[_Part] = Field(default_factory=list)


class _Candidate(BaseModel):
    content: _Content = Field(default_factory=_Content)


class _ApiError(BaseModel):
    message: str = ""


class _GenerateContentResponse(BaseModel):
    candidates: List[_Candidate] = Field(default_factory=list)
    error: Optional[_ApiError] = None


def build_prompt(previous_description: str, timestamp_sec: float) -> str:
    """Fill the frame prompt with the carried context and the frame timestamp"""
    return PROMPT_TEMPLATE.format(
        previous_description=previous_description,
        timestamp=timestamp_sec,
        vocabulary=", ".join(MOTION_VOCABULARY),
    )


def error_marker(error: Exception) -> str:
    return f"[Error: {error}]"


def call_vision_model(
    ctx: RequestContext,
    api_key: str,
    image_bytes: bytes,
    prompt: str,
    base_url: str = GEMINI_BASE_URL,
    model: str = GEMINI_MODEL,
    call_timeout: Optional[float] = PROVIDER_TIMEOUT_SECONDS,
) -> str:
    """
    Ask Gemini to describe one image

    Args:
        ctx: Request context bounding the call
        api_key: Gemini API key
        image_bytes: JPEG bytes of the frame
        prompt: Text prompt sent alongside the image
        base_url: Provider base URL
        model: Gemini model name
        call_timeout: Upper bound for the HTTP call

    Returns:
        Generated description, trimmed

    Raises:
        ProviderError: Transport failure, non-200 status, API error or empty output
        DecodeError: Response body is not valid JSON of the expected shape
    """
    url = f"{base_url.rstrip('/')}/v1beta/models/{model}:generateContent"
    body = {
        "contents": [{
            "parts": [
                {"text": prompt},
                {"inline_data": {
                    "mime_type": IMAGE_MIME_TYPE,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }},
            ],
        }],
    }

    timeout = ctx.timeout_for("gemini request", cap=call_timeout)
    try:
        response = requests.post(url, params={"key": api_key}, json=body, timeout=timeout)
    except requests.Timeout as e:
        if ctx.expired():
            raise DeadlineExceeded("gemini request: deadline exceeded") from e
        raise ProviderError(f"gemini request: {e}") from e
    except requests.RequestException as e:
        raise ProviderError(f"gemini request: {e}") from e

    if response.status_code != 200:
        raise ProviderError(
            f"gemini returned {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        decoded = _GenerateContentResponse.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise DecodeError(f"decode gemini response: {e}", status_code=response.status_code) from e

    if decoded.error is not None:
        raise ProviderError(f"gemini error: {decoded.error.message}", status_code=response.status_code)

    if not decoded.candidates or not decoded.candidates[0].content.parts:
        raise ProviderError("empty response from gemini", status_code=response.status_code)

    text = decoded.candidates[0].content.parts[0].text.strip()
    if not text:
        raise ProviderError("empty response from gemini", status_code=response.status_code)
    return text


def run_visual_descriptions(
    ctx: RequestContext,
    keyframes: Sequence[Keyframe],
    api_key: str,
    base_url: str = GEMINI_BASE_URL,
    model: str = GEMINI_MODEL,
    call_timeout: Optional[float] = PROVIDER_TIMEOUT_SECONDS,
    describe: Optional[Callable[[str, bytes], str]] = None,
) -> VisualResult:
    """
    Describe keyframes one after another, carrying context forward

    A failed frame gets an "[Error: ...]" description and processing continues.
    Only successful descriptions are carried into the next prompt, so after a
    failure the next frame still sees the last good description (or the
    first-frame sentinel).

    Args:
        ctx: Request context bounding all provider calls
        keyframes: Keyframes in processing order
        api_key: Gemini API key
        base_url: Provider base URL
        model: Gemini model name
        call_timeout: Upper bound for each HTTP call
        describe: Override for the per-frame call, takes (prompt, image_bytes)

    Returns:
        VisualResult with one FrameDescription per keyframe, in input order
    """
    if not api_key:
        raise ConfigurationError("vision-language API key is required")

    if describe is None:
        def describe(prompt: str, image_bytes: bytes) -> str:
            return call_vision_model(ctx, api_key, image_bytes, prompt,
                                     base_url=base_url, model=model, call_timeout=call_timeout)

    frames: List[FrameDescription] = []
    previous_description = FIRST_FRAME_CONTEXT
    failures = 0

    for keyframe in keyframes:
        prompt = build_prompt(previous_description, keyframe.timestamp_sec)
        try:
            description = describe(prompt, keyframe.image_bytes)
        except ExtractionError as e:
            failures += 1
            logger.warning("Frame %d (%.2fs) failed: %s", keyframe.index, keyframe.timestamp_sec, e)
            description = error_marker(e)
        else:
            previous_description = description

        frames.append(FrameDescription(
            frame_index=keyframe.index,
            timestamp_sec=keyframe.timestamp_sec,
            description=description,
        ))

    logger.info("Described %d frames (%d failed)", len(frames), failures)
    return VisualResult(frames=frames)
