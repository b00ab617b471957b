"""
Media attachments: uploads to an S3-compatible asset host plus an in-memory test double.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from folio.config import Settings
from folio.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_FORMATS = ("jpg", "jpeg", "png", "gif", "webp")
VIDEO_FORMATS = ("mp4", "mov", "avi", "webm", "mkv")


@dataclass(frozen=True)
class MediaConstraints:
    resource_type: str
    allowed_formats: tuple[str, ...]
    max_width: int
    max_height: int
    max_bytes: int

    @property
    def folder(self) -> str:
        return f"{self.resource_type}s"


def image_constraints(settings: Settings) -> MediaConstraints:
    return MediaConstraints("image", IMAGE_FORMATS, 1200, 800, settings.max_image_bytes)


def video_constraints(settings: Settings) -> MediaConstraints:
    return MediaConstraints("video", VIDEO_FORMATS, 1280, 720, settings.max_video_bytes)


@dataclass(frozen=True)
class MediaAsset:
    url: str
    public_id: str
    resource_type: str

    def as_dict(self) -> dict:
        return {
            "url": self.url,
            "publicId": self.public_id,
            "resourceType": self.resource_type,
        }


def validate_upload(filename: str, data: bytes, constraints: MediaConstraints) -> str:
    """Check an upload against ``constraints`` and return its lower-case extension."""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension not in constraints.allowed_formats:
        raise ValidationError(
            f"Unsupported {constraints.resource_type} format. Allowed: "
            + ", ".join(constraints.allowed_formats)
        )
    if not data:
        raise ValidationError("Uploaded file is empty")
    if len(data) > constraints.max_bytes:
        raise ValidationError(
            f"File too large. Maximum size is {constraints.max_bytes} bytes"
        )
    return extension


def fit_image(data: bytes, max_width: int, max_height: int) -> bytes:
    """Downscale an image to fit the bounds, keeping its aspect ratio and format."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.width <= max_width and img.height <= max_height:
                return data
            image_format = img.format
            img.thumbnail((max_width, max_height))
            out = io.BytesIO()
            img.save(out, format=image_format)
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("Uploaded file is not a valid image") from exc


class MediaClient(Protocol):
    """Defines the operations the API needs from the asset host."""

    def upload(
        self, data: bytes, filename: str, constraints: MediaConstraints
    ) -> MediaAsset:
        ...

    def delete(self, locator: str) -> None:
        ...


def _object_key(folder: str, constraints: MediaConstraints, extension: str) -> str:
    return f"{folder}/{constraints.folder}/{uuid.uuid4().hex}.{extension}"


@dataclass
class InMemoryMediaClient:
    """Test double for asset host interactions."""

    base_url: str = "https://media.example.test"
    folder: str = "portfolio"
    fail_deletes: bool = False
    stored_objects: dict = field(default_factory=dict)

    def upload(
        self, data: bytes, filename: str, constraints: MediaConstraints
    ) -> MediaAsset:
        extension = validate_upload(filename, data, constraints)
        key = _object_key(self.folder, constraints, extension)
        self.stored_objects[key] = data
        return MediaAsset(
            url=f"{self.base_url}/{key}",
            public_id=key,
            resource_type=constraints.resource_type,
        )

    def delete(self, locator: str) -> None:
        if self.fail_deletes:
            raise UpstreamError(f"Simulated delete failure for {locator}")
        key = locator.removeprefix(f"{self.base_url}/")
        self.stored_objects.pop(key, None)


@dataclass
class S3MediaClient:
    """
    Asset host backed by any S3-compatible bucket.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    folder: str = "portfolio"
    public_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )
        if not self.public_base_url:
            if self.endpoint:
                self.public_base_url = f"{self.endpoint.rstrip('/')}/{self.bucket}"
            else:
                self.public_base_url = (
                    f"https://{self.bucket}.s3.{self.region or 'us-east-1'}.amazonaws.com"
                )
        self.public_base_url = self.public_base_url.rstrip("/")

    def upload(
        self, data: bytes, filename: str, constraints: MediaConstraints
    ) -> MediaAsset:
        extension = validate_upload(filename, data, constraints)
        if constraints.resource_type == "image":
            data = fit_image(data, constraints.max_width, constraints.max_height)
        key = _object_key(self.folder, constraints, extension)
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                # Videos are not transcoded here; the bounds travel with the
                # object for the delivery layer.
                Metadata={
                    "max-width": str(constraints.max_width),
                    "max-height": str(constraints.max_height),
                },
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Upload of %s to %s failed", filename, key)
            raise UpstreamError("Media upload failed") from exc
        logger.info("Uploaded %s as %s", filename, key)
        return MediaAsset(
            url=f"{self.public_base_url}/{key}",
            public_id=key,
            resource_type=constraints.resource_type,
        )

    def key_for(self, locator: str) -> str:
        prefix = f"{self.public_base_url}/"
        if locator.startswith(prefix):
            return locator[len(prefix) :]
        if "://" in locator:
            raise ValidationError(f"Locator {locator} is not served by this media host")
        return locator

    def delete(self, locator: str) -> None:
        key = self.key_for(locator)
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamError(f"Media delete failed for {key}") from exc
        logger.info("Deleted media object %s", key)


def delete_media_quietly(media: MediaClient, locator: Optional[str]) -> None:
    """Best-effort removal of a detached asset; failures are only logged."""
    if not locator:
        return
    try:
        media.delete(locator)
    except Exception:
        logger.exception("Failed to delete media asset %s", locator)
