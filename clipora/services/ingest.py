"""Locate an uploaded source video despite storage layout drift.

Stored upload paths outlive bucket renames, URL-encoding changes and moved
files. The resolver probes a fixed list of (bucket, path) candidates first and
only then falls back to a bounded listing scan.
"""
import logging
import posixpath
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import unquote, urlparse

from clipora.config import settings
from clipora.errors import NotFoundError
from clipora.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

GCS_HTTP_HOSTS = ("storage.googleapis.com", "storage.cloud.google.com")


@dataclass(frozen=True)
class ResolvedObject:
    """A (bucket, path) pair confirmed to exist."""
    bucket: str
    path: str

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}/{self.path}"


def _dedupe(values) -> list:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def split_embedded_bucket(stored_path: str) -> Tuple[Optional[str], str]:
    """Split gs:// and storage.googleapis.com URLs into (bucket, object path)."""
    if stored_path.startswith("gs://"):
        bucket, _, path = stored_path[len("gs://"):].partition("/")
        return bucket or None, path

    if stored_path.startswith(("http://", "https://")):
        parsed = urlparse(stored_path)
        if parsed.netloc in GCS_HTTP_HOSTS:
            bucket, _, path = parsed.path.lstrip("/").partition("/")
            return bucket or None, path
        return None, parsed.path.lstrip("/")

    return None, stored_path


class IngestResolver:
    """Resolve a stored upload path to a canonical storage reference."""

    def __init__(
        self,
        storage: ObjectStorage,
        primary_bucket: Optional[str] = None,
        fallback_bucket: Optional[str] = None,
        max_list_pages: Optional[int] = None,
    ):
        self.storage = storage
        self.primary_bucket = primary_bucket if primary_bucket is not None else settings.uploads_bucket
        self.fallback_bucket = fallback_bucket if fallback_bucket is not None else settings.fallback_uploads_bucket
        self.max_list_pages = max_list_pages if max_list_pages is not None else settings.resolver_max_list_pages

    def bucket_candidates(self, stored_path: str) -> List[str]:
        embedded, _ = split_embedded_bucket(stored_path)
        return _dedupe([embedded, self.primary_bucket, self.fallback_bucket])

    def path_candidates(
        self,
        stored_path: str,
        project_id: Optional[int] = None,
        filename_hint: Optional[str] = None,
    ) -> List[str]:
        _, path = split_embedded_bucket(stored_path)
        decoded = unquote(path)
        basename = posixpath.basename(decoded.rstrip("/"))

        candidates = [
            path,
            decoded,
            decoded.lstrip("/"),
            "/" + decoded.lstrip("/"),
            basename,
            filename_hint,
        ]
        if project_id is not None:
            if filename_hint:
                candidates.append(f"{project_id}/{filename_hint}")
            if basename:
                candidates.append(f"{project_id}/{basename}")
        return _dedupe(candidates)

    async def resolve(
        self,
        stored_path: str,
        project_id: Optional[int] = None,
        filename_hint: Optional[str] = None,
    ) -> ResolvedObject:
        """
        Find the uploaded object.

        Args:
            stored_path: Upload path recorded on the video (may be stale)
            project_id: Owning project, used for project-scoped candidates
            filename_hint: Original filename of the upload

        Returns:
            ResolvedObject for the first candidate that exists

        Raises:
            NotFoundError: If neither direct probes nor the listing scan find it
        """
        buckets = self.bucket_candidates(stored_path)
        if not buckets:
            raise NotFoundError(f"No bucket candidates for {stored_path!r}; configure uploads_bucket")

        paths = self.path_candidates(stored_path, project_id, filename_hint)

        for bucket in buckets:
            for path in paths:
                if await self.storage.exists(bucket, path):
                    if path != stored_path:
                        logger.info(f"Resolved {stored_path!r} to gs://{bucket}/{path}")
                    return ResolvedObject(bucket=bucket, path=path)

        found = await self._scan(buckets, stored_path, project_id, filename_hint)
        if found:
            logger.info(f"Resolved {stored_path!r} by listing scan to {found.uri}")
            return found

        raise NotFoundError(
            f"Upload {stored_path!r} not found in buckets {buckets} after probing {len(paths)} paths"
        )

    async def _scan(
        self,
        buckets: List[str],
        stored_path: str,
        project_id: Optional[int],
        filename_hint: Optional[str],
    ) -> Optional[ResolvedObject]:
        _, path = split_embedded_bucket(stored_path)
        basename = posixpath.basename(unquote(path).rstrip("/"))
        targets = _dedupe([basename, filename_hint])
        if not targets:
            return None

        prefixes = _dedupe([f"{project_id}/" if project_id is not None else None]) + [None]

        for bucket in buckets:
            for prefix in prefixes:
                names = await self.storage.list_names(bucket, prefix=prefix, max_pages=self.max_list_pages)
                for name in names:
                    if any(name == target or name.endswith("/" + target) for target in targets):
                        return ResolvedObject(bucket=bucket, path=name)
        return None
