"""
Transcript Segmenter Module

Turns a speech-recognition response into time-bounded transcript segments.
Provider utterances are used when present; otherwise word-level results are
grouped into chunks of roughly `chunk_duration` seconds.
"""

import logging
from typing import List, Sequence

from models import Segment, SpeechRecognitionResponse, WordEntry

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_DURATION = 3.0


def segment_transcript(response: SpeechRecognitionResponse,
                       chunk_duration: float = DEFAULT_CHUNK_DURATION) -> List[Segment]:
    """
    Build transcript segments from a decoded provider response

    Args:
        response: Decoded speech-recognition response
        chunk_duration: Target chunk length for the word-level fallback

    Returns:
        Segments in provider order (may be empty)
    """
    segments = []
    for utterance in response.results.utterances:
        text = utterance.transcript.strip()
        if not text:
            continue
        end = utterance.end
        if end < utterance.start:
            logger.warning("Utterance at %.2fs ends before it starts (%.2fs), clamping", utterance.start, end)
            end = utterance.start
        segments.append(Segment(start=utterance.start, end=end, text=text))

    if segments:
        logger.debug("Built %d segments from utterances", len(segments))
        return segments

    channels = response.results.channels
    if channels and channels[0].alternatives:
        segments = group_words_into_chunks(channels[0].alternatives[0].words, chunk_duration)
        logger.debug("No utterances, grouped words into %d segments", len(segments))

    return segments


def group_words_into_chunks(words: Sequence[WordEntry], chunk_duration: float) -> List[Segment]:
    """
    Greedily group words into chunks.

    A chunk closes right after the word whose end is at least `chunk_duration`
    past the chunk start (checked after every word, the first one included).
    Leftover words become a final chunk ending at the last word's end.
    """
    segments = []
    tokens: List[str] = []
    chunk_start = 0.0

    for word in words:
        if not tokens:
            chunk_start = word.start
        tokens.append(word.word)

        if word.end - chunk_start >= chunk_duration:
            segments.extend(_close_chunk(tokens, chunk_start, word.end))
            tokens = []

    if tokens:
        segments.extend(_close_chunk(tokens, chunk_start, words[-1].end))

    return segments


def _close_chunk(tokens: List[str], start: float, end: float) -> List[Segment]:
    text = " ".join(token.strip() for token in tokens if token.strip())
    if not text:
        return []
    return [Segment(start=start, end=max(start, end), text=text)]
