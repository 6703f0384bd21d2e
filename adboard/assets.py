"""
Image validation and asset stores.

An asset store takes an accepted image upload and returns the URL the
listing pages use as the image source. CloudinaryAssetStore is used when
credentials are configured; LocalAssetStore writes under UPLOADS_DIR and
the app serves those files at /uploads.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

import cloudinary.uploader

from adboard.config import Settings
from adboard.errors import AssetStoreError, UploadError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif"}
TYPE_ERROR_MESSAGE = "Only image files (jpeg, jpg, png, gif) are allowed!"


@dataclass
class ImageUpload:
    """An uploaded file read fully into memory."""
    filename: str
    content_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()

    @property
    def size(self) -> int:
        return len(self.data)


def validate_image(upload: ImageUpload, max_bytes: int) -> None:
    """
    Reject anything but a jpeg/png/gif image of at most `max_bytes`.

    Both the file extension and the declared MIME type must match.

    Raises:
        UploadError: with a message suitable for the user.
    """
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if upload.extension not in ALLOWED_EXTENSIONS or content_type not in ALLOWED_MIME_TYPES:
        logger.info(f"Rejected upload {upload.filename!r} ({content_type or 'no type'})")
        raise UploadError(TYPE_ERROR_MESSAGE)
    if upload.size > max_bytes:
        logger.info(f"Rejected upload {upload.filename!r}: {upload.size} bytes > {max_bytes}")
        raise UploadError(f"File too large (max {max_bytes // (1024 * 1024)} MB)")


class AssetStore:
    """Stores an accepted image and returns its public URL."""

    def save(self, upload: ImageUpload) -> str:
        raise NotImplementedError


class CloudinaryAssetStore(AssetStore):
    """
    Uploads images to Cloudinary into a fixed folder, capping the width.

    Credentials are passed on every call rather than through
    cloudinary.config(), so the store carries its own configuration.
    """

    def __init__(self, cloud_name: str, api_key: str, api_secret: str,
                 folder: str = "free-ad-site-uploads", max_width: int = 1000):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.max_width = max_width

    def save(self, upload: ImageUpload) -> str:
        logger.info(f"Uploading {upload.filename!r} ({upload.size} bytes) to Cloudinary")
        try:
            result = cloudinary.uploader.upload(
                upload.data,
                folder=self.folder,
                resource_type="image",
                allowed_formats=["jpg", "jpeg", "png", "gif"],
                transformation=[{"width": self.max_width, "crop": "limit"}],
                cloud_name=self.cloud_name,
                api_key=self.api_key,
                api_secret=self.api_secret,
            )
        except Exception as e:
            logger.error(f"Cloudinary upload failed for {upload.filename!r}: {e}")
            raise AssetStoreError("Image upload failed") from e

        url = result.get("secure_url") or result.get("url")
        if not url:
            logger.error(f"Cloudinary returned no URL for {upload.filename!r}: {result}")
            raise AssetStoreError("Image upload failed")
        logger.info(f"Uploaded image to {url}")
        return url


class LocalAssetStore(AssetStore):
    """Writes images under `directory` and serves them from `url_prefix`."""

    def __init__(self, directory: str, url_prefix: str = "/uploads"):
        self.directory = directory
        self.url_prefix = url_prefix.rstrip("/")

    def save(self, upload: ImageUpload) -> str:
        name = f"{uuid.uuid4().hex}{upload.extension}"
        path = os.path.join(self.directory, name)
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(path, "wb") as f:
                f.write(upload.data)
        except OSError as e:
            logger.error(f"Failed to write upload to {path}: {e}")
            raise AssetStoreError("Image upload failed") from e
        logger.info(f"Stored image at {path}")
        return f"{self.url_prefix}/{name}"


def build_asset_store(settings: Settings) -> AssetStore:
    """Pick Cloudinary when configured, else the local disk store."""
    if settings.cloudinary_enabled:
        logger.info("Using Cloudinary asset store")
        return CloudinaryAssetStore(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            folder=settings.CLOUDINARY_FOLDER,
            max_width=settings.CLOUDINARY_MAX_WIDTH,
        )
    logger.info(f"Using local asset store at {settings.UPLOADS_DIR}")
    return LocalAssetStore(settings.UPLOADS_DIR)


def read_upload(filename: Optional[str], content_type: Optional[str], data: bytes) -> Optional[ImageUpload]:
    """Build an ImageUpload, or None when the form carried no file."""
    if not filename:
        return None
    return ImageUpload(filename=filename, content_type=content_type or "", data=data)
