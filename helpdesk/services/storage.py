"""
Attachment storage: ordered tiers with write and read fallback.

A tier is a key -> bytes store. Writes go to the first tier that accepts
them; the winning tier is recorded next to the path so reads go straight
there, falling back to probing the remaining tiers in order when it fails.
"""
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Protocol, Sequence, TypeVar
from uuid import uuid4

from helpdesk.core.errors import NotFound, StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

ATTACHMENT_PREFIX = "ticket-attachments"


class TierError(Exception):
    """A tier could not complete an operation."""


class TierUnavailable(TierError):
    pass


class ObjectMissing(TierError):
    pass


class StorageTier(Protocol):
    name: str

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        ...

    def get(self, path: str) -> bytes:
        ...

    def delete(self, path: str) -> None:
        ...


class FilesystemTier:
    """Tier backed by a directory on local disk."""

    def __init__(self, name: str, root: Path):
        self.name = name
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ObjectMissing(f"Refusing path outside tier root: {path}")
        return self.root.joinpath(*relative.parts)

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise TierUnavailable(f"{self.name}: {e}") from e

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise ObjectMissing(f"{self.name}: {path}")
        try:
            return target.read_bytes()
        except OSError as e:
            raise TierUnavailable(f"{self.name}: {e}") from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise TierUnavailable(f"{self.name}: {e}") from e


class S3Tier:
    """Tier backed by an S3 (or S3-compatible) bucket."""

    def __init__(self, name: str, bucket: str, client=None, region: Optional[str] = None,
                 endpoint_url: Optional[str] = None, access_key: Optional[str] = None,
                 secret_key: Optional[str] = None):
        self.name = name
        self.bucket = bucket
        if client is None:
            import boto3

            session_kwargs = {}
            if access_key and secret_key:
                session_kwargs["aws_access_key_id"] = access_key
                session_kwargs["aws_secret_access_key"] = secret_key
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url, **session_kwargs)
        self.client = client

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise TierUnavailable(f"{self.name}: {e}") from e

    def get(self, path: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=path)
            return obj["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise ObjectMissing(f"{self.name}: {path}") from e
            raise TierUnavailable(f"{self.name}: {e}") from e
        except BotoCoreError as e:
            raise TierUnavailable(f"{self.name}: {e}") from e

    def delete(self, path: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        # delete_object on a missing key succeeds, so this is idempotent
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as e:
            raise TierUnavailable(f"{self.name}: {e}") from e


@dataclass(frozen=True)
class StoredObject:
    path: str
    tier: str
    size: int


_UNSAFE_EXT = re.compile(r"[^A-Za-z0-9]")


def build_attachment_path(ticket_id: int, filename: Optional[str], response_id: Optional[int] = None) -> str:
    """Unique, opaque storage key: ``ticket-attachments/<ticket>[_response_<id>]_<ts>_<uuid>.<ext>``."""
    suffix = PurePosixPath(filename or "").suffix.lstrip(".")
    ext = _UNSAFE_EXT.sub("", suffix)[:10].lower()
    stem = f"{ticket_id}_response_{response_id}" if response_id is not None else f"{ticket_id}"
    name = f"{stem}_{int(time.time())}_{uuid4().hex}"
    if ext:
        name = f"{name}.{ext}"
    return f"{ATTACHMENT_PREFIX}/{name}"


class AttachmentStoreGateway:
    def __init__(self, tiers: Sequence[StorageTier]):
        if not tiers:
            raise ValueError("At least one storage tier is required")
        self.tiers: List[StorageTier] = list(tiers)
        self._by_name: Dict[str, StorageTier] = {t.name: t for t in self.tiers}

    @property
    def tier_names(self) -> List[str]:
        return [t.name for t in self.tiers]

    def store(self, data: bytes, path: str, content_type: Optional[str] = None) -> StoredObject:
        """Write to the first tier that accepts the bytes; StorageFailure if every tier refuses."""
        for tier in self.tiers:
            try:
                tier.put(path, data, content_type)
            except TierError as e:
                logger.warning("Storage tier %s rejected write of %s: %s", tier.name, path, e)
                continue
            logger.info("Stored %s (%d bytes) on tier %s", path, len(data), tier.name)
            return StoredObject(path=path, tier=tier.name, size=len(data))

        logger.error("All storage tiers rejected write of %s (tiers: %s)", path, self.tier_names)
        raise StorageFailure()

    def store_with_metadata(
        self,
        data: bytes,
        path: str,
        content_type: Optional[str],
        record: Callable[[StoredObject], T],
    ) -> T:
        """
        Store bytes, then call ``record`` to persist their metadata.

        If ``record`` fails the bytes are purged from every tier before the
        error propagates, so no orphaned file is left behind.
        """
        stored = self.store(data, path, content_type)
        try:
            return record(stored)
        except Exception:
            logger.exception("Attachment metadata write failed for %s; purging stored bytes", path)
            self.purge(path)
            raise

    def _read_order(self, tier_hint: Optional[str]) -> List[StorageTier]:
        hinted = self._by_name.get(tier_hint) if tier_hint else None
        if hinted is None:
            return list(self.tiers)
        return [hinted] + [t for t in self.tiers if t is not hinted]

    def resolve(self, path: str, tier_hint: Optional[str] = None) -> bytes:
        """
        Return the bytes stored at ``path``.

        The recorded tier is tried first, then every other tier in order. A
        zero-byte or unreadable object counts as missing on that tier.
        """
        for tier in self._read_order(tier_hint):
            try:
                data = tier.get(path)
            except ObjectMissing:
                continue
            except TierError as e:
                logger.warning("Storage tier %s failed reading %s: %s", tier.name, path, e)
                continue
            if not data:
                logger.warning("Storage tier %s holds an empty object at %s; trying next tier", tier.name, path)
                continue
            if tier_hint and tier.name != tier_hint:
                logger.info("Resolved %s on fallback tier %s (recorded: %s)", path, tier.name, tier_hint)
            return data

        raise NotFound("File not found. The attachment may have been moved or deleted.")

    def purge(self, path: str) -> List[str]:
        """Delete ``path`` from every tier. Returns the tiers where deletion failed."""
        failed: List[str] = []
        for tier in self.tiers:
            try:
                tier.delete(path)
            except TierError as e:
                logger.warning("Storage tier %s could not delete %s: %s", tier.name, path, e)
                failed.append(tier.name)
        return failed


def create_gateway(cfg) -> AttachmentStoreGateway:
    """Build the gateway from settings (ATTACHMENT_TIERS lists tier names in order)."""
    roots = {
        "public": cfg.ATTACHMENT_PUBLIC_ROOT,
        "private": cfg.ATTACHMENT_PRIVATE_ROOT,
        "local": cfg.ATTACHMENT_LOCAL_ROOT,
    }
    tiers: List[StorageTier] = []
    for name in cfg.attachment_tiers:
        typ = name.lower()
        if typ in roots:
            tiers.append(FilesystemTier(typ, Path(roots[typ])))
        elif typ == "s3":
            if not cfg.ATTACHMENT_S3_BUCKET:
                raise RuntimeError("ATTACHMENT_S3_BUCKET is required for the s3 tier")
            tiers.append(
                S3Tier(
                    "s3",
                    cfg.ATTACHMENT_S3_BUCKET,
                    region=cfg.ATTACHMENT_S3_REGION,
                    endpoint_url=cfg.ATTACHMENT_S3_ENDPOINT,
                    access_key=cfg.ATTACHMENT_S3_ACCESS_KEY,
                    secret_key=cfg.ATTACHMENT_S3_SECRET_KEY,
                )
            )
        else:
            raise RuntimeError(f"Unsupported attachment tier: {name}")
    return AttachmentStoreGateway(tiers)
