"""
Image assets for products.

An image is uploaded first and handed back as a short-lived pending
handle; creating a product with that handle attaches the uploaded URL.
A product can also be given the URL of an image already in the blob
store. Either way the reference is checked before the record is written.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import unquote, urlparse

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob.aio import ContainerClient

from catalog_api.exceptions import AssetNotFoundError, AssetStoreError, ProductValidationError
from catalog_api.logging_config import get_child_logger, tracer
from catalog_api.models.product import PendingAsset

logger = get_child_logger("services.assets")


class AssetStore(ABC):
    @abstractmethod
    async def upload(self, file_name: str, data: bytes) -> str:
        ...

    @abstractmethod
    async def exists(self, url: str) -> bool:
        ...

    @abstractmethod
    async def download(self, url: str) -> bytes:
        ...


class BlobAssetStore(AssetStore):
    """
    Asset store backed by one Azure Blob Storage container.

    The container client is obtained on first use, so a catalog that never
    touches images runs without blob storage configured.
    """

    def __init__(self, get_container: Callable[[], Awaitable[ContainerClient]]):
        self._get_container = get_container
        self._container: Optional[ContainerClient] = None

    async def container(self) -> ContainerClient:
        if self._container is None:
            self._container = await self._get_container()
        return self._container

    def _blob_name(self, container: ContainerClient, url: str) -> Optional[str]:
        prefix = container.url.rstrip("/") + "/"
        path = url.split("?", 1)[0]
        if not path.startswith(prefix):
            return None
        name = unquote(path[len(prefix):])
        return name or None

    async def upload(self, file_name: str, data: bytes) -> str:
        blob_name = f"{uuid.uuid4().hex}_{file_name}"
        blob_client = (await self.container()).get_blob_client(blob_name)
        try:
            await blob_client.upload_blob(data, overwrite=True)
        except AzureError as e:
            logger.error(
                "Blob upload failed",
                extra={"blob_name": blob_name, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise AssetStoreError(f"Could not upload image '{file_name}'", original_exception=e) from e
        logger.info("Image uploaded", extra={"blob_name": blob_name, "size": len(data)})
        return blob_client.url

    async def exists(self, url: str) -> bool:
        container = await self.container()
        blob_name = self._blob_name(container, url)
        if blob_name is None:
            return False
        try:
            return await container.get_blob_client(blob_name).exists()
        except AzureError as e:
            logger.error(
                "Blob existence check failed",
                extra={"blob_name": blob_name, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise AssetStoreError("Could not check image existence", original_exception=e) from e

    async def download(self, url: str) -> bytes:
        container = await self.container()
        blob_name = self._blob_name(container, url)
        if blob_name is None:
            raise AssetNotFoundError(f"Image '{url}' is not held by this catalog")
        try:
            downloader = await container.get_blob_client(blob_name).download_blob()
            return await downloader.readall()
        except ResourceNotFoundError as e:
            raise AssetNotFoundError(f"Image '{url}' not found") from e
        except AzureError as e:
            logger.error(
                "Blob download failed",
                extra={"blob_name": blob_name, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise AssetStoreError("Could not download image", original_exception=e) from e


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingAssetRegistry:
    """
    Upload handles waiting to be attached to a product.

    Held per process; a handle that reaches another instance is not found
    there, and the caller can fall back to the image URL.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._pending: Dict[str, PendingAsset] = {}

    def register(self, image_ref: str) -> PendingAsset:
        self.purge_expired()
        pending = PendingAsset(
            handle=uuid.uuid4().hex,
            image_ref=image_ref,
            expires_at=self._clock() + self.ttl,
        )
        self._pending[pending.handle] = pending
        return pending

    def lookup(self, handle: str) -> Optional[PendingAsset]:
        pending = self._pending.get(handle)
        if pending is None:
            return None
        if pending.expires_at <= self._clock():
            del self._pending[handle]
            return None
        return pending

    def discard(self, handle: str) -> None:
        self._pending.pop(handle, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [h for h, p in self._pending.items() if p.expires_at <= now]
        for handle in expired:
            del self._pending[handle]
        return len(expired)

    def __len__(self) -> int:
        return len(self._pending)


@dataclass(frozen=True)
class ValidatedRef:
    image_ref: str
    handle: Optional[str] = None


def _is_url(ref: str) -> bool:
    parsed = urlparse(ref)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class AssetReferenceResolver:
    """Checks that an image reference points at an uploaded image."""

    def __init__(self, asset_store: AssetStore, registry: PendingAssetRegistry):
        self.asset_store = asset_store
        self.registry = registry

    async def stage(self, file_name: str, data: bytes) -> PendingAsset:
        """Upload an image and return a handle to create a product with."""
        if not file_name or not file_name.strip():
            raise ProductValidationError.single("file_name", "a file name is required")
        if not data:
            raise ProductValidationError.single("file", "please upload a valid image")

        with tracer.start_as_current_span("stage_image") as span:
            span.set_attribute("file_name", file_name)
            span.set_attribute("size", len(data))
            image_ref = await self.asset_store.upload(file_name.strip(), data)
            pending = self.registry.register(image_ref)
            logger.info(
                "Image staged",
                extra={"handle": pending.handle, "expires_at": pending.expires_at.isoformat()},
            )
            return pending

    async def resolve(self, ref: str) -> ValidatedRef:
        """
        Resolve a pending handle or an image URL.

        Raises:
            ProductValidationError: If the reference is blank, an unknown or
                expired handle, or a URL the blob store does not hold
            AssetStoreError: If the blob store cannot be queried
        """
        ref = ref.strip()
        if not ref:
            raise ProductValidationError.single("image_ref", "must not be blank")

        pending = self.registry.lookup(ref)
        if pending is not None:
            return ValidatedRef(image_ref=pending.image_ref, handle=pending.handle)

        if not _is_url(ref):
            logger.warning("Unknown or expired image handle", extra={"image_ref": ref})
            raise ProductValidationError.single("image_ref", "unknown or expired upload handle")

        if not await self.asset_store.exists(ref):
            logger.warning("Image not found in asset store", extra={"image_ref": ref})
            raise ProductValidationError.single("image_ref", "image was not uploaded to the asset store")

        return ValidatedRef(image_ref=ref)

    def confirm(self, validated: ValidatedRef) -> None:
        """Retire the handle once the product using it has been written."""
        if validated.handle is not None:
            self.registry.discard(validated.handle)
