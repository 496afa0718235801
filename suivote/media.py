# media fan-out: collect referenced assets, upload concurrently, rewrite options
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .blobs import MediaPolicy
from .config import UPLOAD_ATTEMPTS, UPLOAD_RETRY_DELAY
from .errors import AssemblyAbort, UploadError
from .models import AssetStatus, BlobRef, MediaAsset, MediaResolution, PollDraft

logger = logging.getLogger(__name__)

ProgressFn = Callable[[str, AssetStatus], None]

_ALLOWED = {
    AssetStatus.PENDING: {AssetStatus.UPLOADING},
    AssetStatus.UPLOADING: {AssetStatus.COMPLETE, AssetStatus.ERROR},
    AssetStatus.COMPLETE: set(),
    AssetStatus.ERROR: set(),
}


def referenced_assets(polls: Iterable[PollDraft]) -> List[str]:
    """Distinct media local ids in first-seen order."""
    seen: Dict[str, None] = {}
    for poll in polls:
        for option in poll.options:
            if option.media_ref and option.media_ref not in seen:
                seen[option.media_ref] = None
    return list(seen)


def rewrite_polls(polls: Iterable[PollDraft], refs: Mapping[str, BlobRef]) -> List[PollDraft]:
    """
    Return copies of the polls with every media_ref replaced by its resolved URL.
    Options without media are left untouched.
    """
    rewritten = []
    for poll in polls:
        options = []
        for option in poll.options:
            if option.media_ref and option.media_ref in refs:
                option = option.model_copy(update={"media_url": refs[option.media_ref].media_url})
            options.append(option)
        rewritten.append(poll.model_copy(update={"options": options}))
    return rewritten


class MediaUploadOrchestrator:
    """
    Drives Pending -> Uploading -> Complete | Error for each asset of one
    vote-creation attempt. Any failure fails the whole resolution.
    """

    def __init__(
        self,
        uploader,
        policy: Optional[MediaPolicy] = None,
        attempts: int = UPLOAD_ATTEMPTS,
        retry_delay: float = UPLOAD_RETRY_DELAY,
        on_progress: Optional[ProgressFn] = None,
    ):
        self.uploader = uploader
        self.policy = policy or MediaPolicy()
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay
        self.on_progress = on_progress
        self.states: Dict[str, AssetStatus] = {}

    def _transition(self, local_id: str, status: AssetStatus) -> None:
        current = self.states.get(local_id, AssetStatus.PENDING)
        if status not in _ALLOWED[current]:
            raise RuntimeError(f"asset {local_id}: illegal transition {current.value} -> {status.value}")
        self.states[local_id] = status
        if self.on_progress:
            self.on_progress(local_id, status)

    async def _upload_one(self, asset: MediaAsset) -> BlobRef:
        self.states[asset.local_id] = AssetStatus.PENDING
        self._transition(asset.local_id, AssetStatus.UPLOADING)
        try:
            self.policy.check(asset)
            attempt = 1
            while True:
                try:
                    ref = await self.uploader.upload(asset)
                    break
                except UploadError as exc:
                    if attempt >= self.attempts or not exc.transient:
                        raise
                    logger.warning("upload of %s failed (attempt %d/%d): %s", asset.local_id, attempt, self.attempts, exc)
                    attempt += 1
                    await asyncio.sleep(self.retry_delay)
        except Exception:
            self._transition(asset.local_id, AssetStatus.ERROR)
            raise
        self._transition(asset.local_id, AssetStatus.COMPLETE)
        return ref

    async def resolve_all(self, polls: List[PollDraft], assets_by_id: Mapping[str, MediaAsset]) -> MediaResolution:
        """
        Upload every distinct asset referenced by the polls, concurrently.

        Assets that already carry a blob_reference are reused as-is. Returns
        the resolved references plus updated copies of the assets; raises
        AssemblyAbort naming every asset that could not be resolved.
        """
        resolution = MediaResolution()
        failed: Dict[str, Exception] = {}
        to_upload: List[MediaAsset] = []

        for local_id in referenced_assets(polls):
            asset = assets_by_id.get(local_id)
            if asset is None:
                failed[local_id] = UploadError(f"asset {local_id} is referenced but missing", local_id=local_id)
                continue
            if asset.blob_reference:
                resolution.refs[local_id] = BlobRef(
                    blob_reference=asset.blob_reference,
                    storage_object_id=asset.storage_object_id or "",
                )
                resolution.assets[local_id] = asset
                resolution.skipped.append(local_id)
                continue
            to_upload.append(asset)

        # join point: every upload settles before we decide
        results = await asyncio.gather(*(self._upload_one(a) for a in to_upload), return_exceptions=True)

        for asset, result in zip(to_upload, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed[asset.local_id] = result
                continue
            resolution.refs[asset.local_id] = result
            resolution.assets[asset.local_id] = asset.model_copy(
                update={
                    "status": AssetStatus.COMPLETE,
                    "blob_reference": result.blob_reference,
                    "storage_object_id": result.storage_object_id,
                }
            )
            resolution.uploaded.append(asset.local_id)

        if failed:
            names = ", ".join(sorted(failed))
            logger.error("media resolution failed for %s", names)
            raise AssemblyAbort(f"media upload failed for: {names}", failed_assets=failed)

        logger.info("media resolved: %d uploaded, %d reused", len(resolution.uploaded), len(resolution.skipped))
        return resolution
