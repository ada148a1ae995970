"""
Object storage access (S3-compatible, e.g. Cloudflare R2)

All keys live under ads/{ad_id}/. The boto3 client is thread-safe and shared
by both extraction streams.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ValidationError

from config import Settings
from errors import StorageError
from models import KeyframeMeta, KeyframeMetadataFile
from request_context import RequestContext

logger = logging.getLogger(__name__)


# ---- Deterministic key layout ----

def video_key(ad_id: str) -> str:
    return f"ads/{ad_id}/video.mp4"


def keyframe_prefix(ad_id: str) -> str:
    return f"ads/{ad_id}/keyframes/"


def keyframe_metadata_key(ad_id: str) -> str:
    return f"ads/{ad_id}/keyframes/metadata.json"


def transcript_result_key(ad_id: str) -> str:
    return f"ads/{ad_id}/extraction/asr_results.json"


def visual_result_key(ad_id: str) -> str:
    return f"ads/{ad_id}/extraction/vlm_results.json"


def create_s3_client(settings: Settings):
    """Build a boto3 S3 client for the configured endpoint"""
    return boto3.client(
        "s3",
        endpoint_url=settings.r2_endpoint_url or None,
        aws_access_key_id=settings.r2_access_key_id or None,
        aws_secret_access_key=settings.r2_secret_access_key or None,
        region_name=settings.r2_region,
        config=BotoConfig(
            s3={"addressing_style": "path"},
            retries={"max_attempts": 1, "mode": "standard"},
            connect_timeout=settings.storage_connect_timeout_seconds,
            read_timeout=settings.storage_read_timeout_seconds,
        ),
    )


class ObjectStore:
    """Thin wrapper over an S3 client that maps library errors to StorageError"""

    def __init__(self, s3_client, bucket: str):
        self.s3_client = s3_client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        return cls(create_s3_client(settings), settings.r2_bucket)

    # ---- Generic operations ----

    def get_bytes(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"download {key}: {e}", key=key) from e

    def get_json(self, key: str) -> Any:
        data = self.get_bytes(key)
        try:
            return json.loads(data)
        except ValueError as e:
            raise StorageError(f"decode {key}: {e}", key=key) from e

    def put_json(self, key: str, value: Any) -> None:
        """
        Serialize a value to JSON and upload it

        Args:
            key: Destination object key
            value: Pydantic model or JSON-serializable value
        """
        if isinstance(value, BaseModel):
            body = value.model_dump_json()
        else:
            body = json.dumps(value)

        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"upload {key}: {e}", key=key) from e
        logger.debug("Uploaded %s (%d bytes)", key, len(body))

    def list_keys_with_prefix(self, prefix: str) -> List[str]:
        """Return every key under prefix, sorted"""
        keys = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []) or []:
                    keys.append(obj["Key"])
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"list {prefix}: {e}", key=prefix) from e
        return sorted(keys)

    # ---- Ad-scoped helpers ----

    def download_video(self, ad_id: str) -> bytes:
        key = video_key(ad_id)
        logger.info("Downloading video s3://%s/%s", self.bucket, key)
        return self.get_bytes(key)

    def download_keyframe_metadata(self, ad_id: str) -> List[KeyframeMeta]:
        """Fetch the metadata.json written by the keyframe selector"""
        key = keyframe_metadata_key(ad_id)
        raw = self.get_json(key)
        try:
            return KeyframeMetadataFile.model_validate(raw).keyframes
        except ValidationError as e:
            raise StorageError(f"decode metadata {key}: {e}", key=key) from e

    def download_keyframe_images(self, metas: Sequence[KeyframeMeta],
                                 ctx: Optional[RequestContext] = None) -> Dict[str, bytes]:
        """
        Download keyframe images

        Images that fail to download are left out of the result and logged.

        Args:
            metas: Keyframe metadata entries to fetch
            ctx: Deadline checked before every download

        Returns:
            Mapping of r2_key -> image bytes

        Raises:
            DeadlineExceeded: ctx ran out of time before all images were fetched
        """
        images: Dict[str, bytes] = {}
        for meta in metas:
            if ctx is not None:
                ctx.check(f"download keyframe {meta.index}")
            try:
                images[meta.r2_key] = self.get_bytes(meta.r2_key)
            except StorageError as e:
                logger.warning("Skipping keyframe %d: %s", meta.index, e)
        return images
