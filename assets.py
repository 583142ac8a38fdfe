"""
Cover image storage.

`AssetStore.delete` never raises: a leftover image in the bucket is
acceptable, a failed request because of it is not. `store` raises
`UpstreamAssetError` because a post cannot be created without its cover.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from app_logging import get_logger
from config import settings
from errors import UpstreamAssetError

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredAsset:
    url: str
    key: str


class AssetStore(ABC):

    @abstractmethod
    def store(self, data: bytes, content_type: str) -> StoredAsset:
        ...

    @abstractmethod
    def delete(self, key: Optional[str]) -> bool:
        """Best-effort delete. Returns False (and logs) on any failure."""


class CloudinaryAssetStore(AssetStore):
    def __init__(self, folder: str = "posts", timeout: int = 30):
        self.folder = folder
        self.timeout = timeout

    def store(self, data, content_type):
        if not content_type or not content_type.startswith("image/"):
            raise UpstreamAssetError("Cover must be an image")
        try:
            result = cloudinary.uploader.upload(
                data,
                folder=self.folder,
                resource_type="image",
                timeout=self.timeout,
            )
        # The SDK raises ValueError when credentials are missing.
        except (CloudinaryError, OSError, ValueError) as e:
            logger.error("Cover upload failed: %s", e)
            raise UpstreamAssetError() from e
        return StoredAsset(url=result["secure_url"], key=result["public_id"])

    def delete(self, key):
        if not key:
            logger.info("No asset key; skipping asset deletion")
            return True
        try:
            response = cloudinary.uploader.destroy(key, timeout=self.timeout)
        except Exception:
            logger.exception("Failed to delete asset %s", key)
            return False
        logger.info("Asset %s deletion response: %s", key, response)
        return response.get("result") in ("ok", "not found")


def configure_cloudinary() -> bool:
    if not settings.CLOUDINARY_CLOUD_NAME:
        logger.warning("CLOUDINARY_CLOUD_NAME is not set; cover uploads will fail")
        return False
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )
    return True
