"""
Object storage contract for raw staging.

    put(key, bytes) -> reference
    get(reference) -> bytes

LocalObjectStorage keeps objects as files under a bucket directory; the
reference is "{bucket}/{key}.json". Writes go to a temp file and are renamed
into place so a reader never sees a partial object.
"""
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from ingestion.errors import TransientStoreFailure

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "raw"
OBJECT_SUFFIX = ".json"


class ObjectStorage(ABC):
    @abstractmethod
    def put(self, key: str, data: bytes) -> str:
        pass

    @abstractmethod
    def get(self, reference: str) -> bytes:
        pass

    @abstractmethod
    def exists(self, reference: str) -> bool:
        pass


class LocalObjectStorage(ObjectStorage):
    """Filesystem bucket. Keys may contain '/' and map onto subdirectories."""

    def __init__(self, root: str, bucket: str = DEFAULT_BUCKET):
        self.root = Path(root)
        self.bucket = bucket

    def _path(self, reference: str) -> Path:
        bucket, _, key = reference.partition("/")
        if bucket != self.bucket or not key or ".." in Path(key).parts:
            raise ValueError(f"Invalid storage reference: {reference}")
        return self.root / bucket / key

    def reference_for(self, key: str) -> str:
        return f"{self.bucket}/{key}{OBJECT_SUFFIX}"

    def put(self, key: str, data: bytes) -> str:
        reference = self.reference_for(key)
        path = self._path(reference)
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise TransientStoreFailure(f"Failed to write {reference}: {e}", key)
        logger.debug(f"Stored {len(data)} bytes at {reference}")
        return reference

    def get(self, reference: str) -> bytes:
        path = self._path(reference)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise TransientStoreFailure(f"Failed to read {reference}: {e}")

    def exists(self, reference: str) -> bool:
        return self._path(reference).exists()
