"""Scratch directories owned by a single job or mix operation."""
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from clipora.config import settings


@contextmanager
def scratch_directory(prefix: str) -> Iterator[Path]:
    """Yield a fresh directory under scratch_dir, removed on every exit path."""
    settings.scratch_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix=prefix, dir=settings.scratch_dir) as tmp:
        yield Path(tmp)
