"""Object storage adapter over Google Cloud Storage.

The google-cloud-storage client is synchronous, so every call is pushed to a
worker thread to keep the job's event loop responsive.
"""
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import storage

from clipora.config import settings

logger = logging.getLogger(__name__)

CLIP_CACHE_CONTROL = "public, max-age=86400"
MIXED_VIDEO_CACHE_CONTROL = "public, max-age=3600"


class ObjectStorage:
    """Bucket/object operations used by the pipeline."""

    def __init__(self, client: Optional[storage.Client] = None):
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client(project=settings.gcp_project_id)
        return self._client

    async def exists(self, bucket: str, path: str) -> bool:
        """Check whether an object exists. A missing bucket counts as missing."""
        def _exists():
            try:
                return self.client.bucket(bucket).blob(path).exists()
            except gcp_exceptions.NotFound:
                return False
        return await asyncio.to_thread(_exists)

    async def download(self, bucket: str, path: str, destination: str | Path) -> Path:
        """Download an object to a local file."""
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        def _download():
            self.client.bucket(bucket).blob(path).download_to_filename(str(destination))

        logger.info(f"Downloading gs://{bucket}/{path} to {destination}")
        await asyncio.to_thread(_download)
        return destination

    async def upload_file(
        self,
        source: str | Path,
        bucket: str,
        destination: str,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None,
    ) -> str:
        """Upload a local file and return its gs:// URI."""
        def _upload():
            blob = self.client.bucket(bucket).blob(destination)
            if cache_control:
                blob.cache_control = cache_control
            blob.upload_from_filename(str(source), content_type=content_type)

        await asyncio.to_thread(_upload)
        return f"gs://{bucket}/{destination}"

    async def upload_bytes(
        self,
        data: bytes,
        bucket: str,
        destination: str,
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> str:
        """Upload an in-memory payload and return its gs:// URI."""
        def _upload():
            blob = self.client.bucket(bucket).blob(destination)
            if cache_control:
                blob.cache_control = cache_control
            blob.upload_from_string(data, content_type=content_type)

        await asyncio.to_thread(_upload)
        return f"gs://{bucket}/{destination}"

    async def list_names(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        max_pages: Optional[int] = None,
    ) -> List[str]:
        """
        List object names under a prefix, reading at most max_pages pages.
        """
        max_pages = settings.resolver_max_list_pages if max_pages is None else max_pages

        def _list():
            names = []
            try:
                blobs = self.client.list_blobs(
                    bucket,
                    prefix=prefix,
                    page_size=settings.resolver_list_page_size,
                )
                for page_number, page in enumerate(blobs.pages):
                    if page_number >= max_pages:
                        logger.warning(
                            f"Listing gs://{bucket}/{prefix or ''} stopped after {max_pages} pages"
                        )
                        break
                    names.extend(blob.name for blob in page)
            except gcp_exceptions.NotFound:
                return []
            return names

        return await asyncio.to_thread(_list)

    async def delete(self, bucket: str, path: str) -> None:
        """Delete an object."""
        await asyncio.to_thread(lambda: self.client.bucket(bucket).blob(path).delete())
