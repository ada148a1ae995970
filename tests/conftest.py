"""Pytest configuration and fixtures."""

import json
from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from config import Settings
from errors import StorageError
from models import Keyframe
from storage import ObjectStore


class InMemoryObjectStore(ObjectStore):
    """ObjectStore backed by a dict instead of S3."""

    def __init__(self, objects: Dict[str, bytes] = None):
        super().__init__(s3_client=None, bucket="test-bucket")
        self.objects = dict(objects or {})
        self.failing_keys = set()
        self.failing_puts = set()

    def get_bytes(self, key: str) -> bytes:
        if key in self.failing_keys or key not in self.objects:
            raise StorageError(f"download {key}: NoSuchKey", key=key)
        return self.objects[key]

    def put_json(self, key: str, value) -> None:
        if key in self.failing_puts:
            raise StorageError(f"upload {key}: AccessDenied", key=key)
        body = value.model_dump_json() if hasattr(value, "model_dump_json") else json.dumps(value)
        self.objects[key] = body.encode("utf-8")

    def list_keys_with_prefix(self, prefix: str) -> List[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))

    def read_json(self, key: str):
        return json.loads(self.objects[key])


@pytest.fixture
def settings():
    """Settings with both provider credentials configured."""
    return Settings(
        r2_bucket="test-bucket",
        deepgram_api_key="dg-key",
        gemini_api_key="gm-key",
        extract_timeout_seconds=5.0,
        provider_timeout_seconds=2.0,
    )


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def ad_store():
    """Store holding a video, keyframe metadata and two keyframe images for ad-1."""
    metadata = {
        "keyframes": [
            {"index": 1, "frame_number": 60, "timestamp_sec": 2.5, "entropy_score": 0.7,
             "r2_key": "ads/ad-1/keyframes/frame_0060.jpg"},
            {"index": 0, "frame_number": 0, "timestamp_sec": 0.0, "entropy_score": 0.9,
             "r2_key": "ads/ad-1/keyframes/frame_0000.jpg"},
        ]
    }
    return InMemoryObjectStore({
        "ads/ad-1/video.mp4": b"fake-video",
        "ads/ad-1/keyframes/metadata.json": json.dumps(metadata).encode("utf-8"),
        "ads/ad-1/keyframes/frame_0000.jpg": b"img0",
        "ads/ad-1/keyframes/frame_0060.jpg": b"img1",
    })


@pytest.fixture
def keyframes():
    return [
        Keyframe(index=0, frame_number=0, timestamp_sec=0.0, image_bytes=b"img1"),
        Keyframe(index=5, frame_number=60, timestamp_sec=2.5, image_bytes=b"img2"),
    ]


@pytest.fixture
def make_response():
    """Factory for fake requests.Response objects."""

    def _make(status_code=200, json_body=None, text=None):
        response = MagicMock()
        response.status_code = status_code
        if json_body is not None:
            response.json.return_value = json_body
            response.text = json.dumps(json_body)
        else:
            response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
            response.text = text or ""
        return response

    return _make


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def gemini_reply(make_response):
    """Build a successful Gemini response carrying the given text."""

    def _reply(text):
        return make_response(json_body=gemini_body(text))

    return _reply
