# Walrus blob store: upload (publisher) + read-back (aggregator)
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from .config import (
    MEDIA_MAX_BYTES,
    REQUEST_TIMEOUT,
    WALRUS_AGGREGATOR_URL,
    WALRUS_PUBLISHER_URL,
    WALRUS_STORAGE_EPOCHS,
)
from .errors import UploadError
from .models import BlobRef, MediaAsset

logger = logging.getLogger(__name__)


class MediaPolicy:
    """Size / MIME gate applied by the caller before an asset is uploaded."""

    def __init__(self, max_bytes: int = MEDIA_MAX_BYTES, allowed_prefixes: Tuple[str, ...] = ("image/", "video/", "audio/")):
        self.max_bytes = max_bytes
        self.allowed_prefixes = allowed_prefixes

    def check(self, asset: MediaAsset) -> None:
        if asset.size == 0:
            raise UploadError(f"asset {asset.local_id} is empty", local_id=asset.local_id)
        if asset.size > self.max_bytes:
            raise UploadError(
                f"asset {asset.local_id} is {asset.size} bytes, limit is {self.max_bytes}",
                local_id=asset.local_id,
            )
        if not asset.content_type.lower().startswith(self.allowed_prefixes):
            raise UploadError(
                f"asset {asset.local_id} has unsupported type {asset.content_type!r}",
                local_id=asset.local_id,
            )


def parse_store_response(data: Dict[str, Any]) -> BlobRef:
    """
    The publisher answers either newlyCreated (fresh upload) or
    alreadyCertified (content-addressed dedup); both become a BlobRef.
    """
    if "newlyCreated" in data:
        blob = data["newlyCreated"].get("blobObject") or {}
        blob_id, object_id = blob.get("blobId"), blob.get("id")
    elif "alreadyCertified" in data:
        certified = data["alreadyCertified"]
        blob_id = certified.get("blobId")
        object_id = (certified.get("event") or {}).get("objectId")
    else:
        raise UploadError("unexpected response format from blob store")

    if not blob_id:
        raise UploadError("blob store response has no blobId")
    return BlobRef(blob_reference=blob_id, storage_object_id=object_id or "")


class WalrusUploader:
    def __init__(
        self,
        publisher_url: str = WALRUS_PUBLISHER_URL,
        aggregator_url: str = WALRUS_AGGREGATOR_URL,
        epochs: int = WALRUS_STORAGE_EPOCHS,
        timeout: float = REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.publisher_url = publisher_url.rstrip("/")
        self.aggregator_url = aggregator_url.rstrip("/")
        self.epochs = epochs
        self.timeout = timeout
        self._client = client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def upload(self, asset: MediaAsset) -> BlobRef:
        """
        One PUT per call. No retries here; retrying is the caller's policy.
        """
        url = f"{self.publisher_url}/v1/blobs"
        try:
            resp = await self._send(
                "PUT",
                url,
                params={"epochs": self.epochs},
                content=asset.raw_bytes,
                headers={"Content-Type": asset.content_type},
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"upload of {asset.local_id} failed: {exc}", local_id=asset.local_id) from exc

        if not resp.is_success:
            raise UploadError(
                f"upload of {asset.local_id} failed with status {resp.status_code}",
                status=resp.status_code,
                local_id=asset.local_id,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise UploadError(
                f"upload of {asset.local_id}: response is not JSON", status=resp.status_code, local_id=asset.local_id
            ) from exc
        if not isinstance(data, dict):
            raise UploadError(
                f"upload of {asset.local_id}: unexpected response format", status=resp.status_code, local_id=asset.local_id
            )
        try:
            ref = parse_store_response(data)
        except UploadError as exc:
            raise UploadError(f"upload of {asset.local_id}: {exc}", status=resp.status_code, local_id=asset.local_id) from exc

        logger.info("uploaded %s (%d bytes) -> blob %s", asset.local_id, asset.size, ref.blob_reference)
        return ref

    async def read(self, blob_id: str) -> bytes:
        blob_id = blob_id.strip()
        try:
            resp = await self._send("GET", f"{self.aggregator_url}/v1/blobs/{blob_id}")
        except httpx.HTTPError as exc:
            raise UploadError(f"read of blob {blob_id} failed: {exc}") from exc
        if not resp.is_success:
            raise UploadError(f"read of blob {blob_id} failed with status {resp.status_code}", status=resp.status_code)
        return resp.content
