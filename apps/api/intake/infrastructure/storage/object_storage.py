import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional
from urllib.parse import quote

from intake.core.domain.errors import StorageError, ValidationError

UPLOAD_ROOT = Path(os.environ.get("UPLOAD_ROOT", "data/uploads"))
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000/files").rstrip("/")
UPLOAD_PREFIX = "uploads"

MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "25"))
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024
CHUNK_SIZE = 1024 * 512
COLLISION_RETRIES = 5

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class StoredObject:
    path: str
    public_url: str
    stored_name: str
    size_bytes: int


def build_object_name(original_name: str, now_ms: Optional[int] = None) -> str:
    """`<epoch millis>-<basename with whitespace runs replaced by "_">`."""
    base = Path(original_name or "document").name
    base = _WHITESPACE.sub("_", base.strip()) or "document"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}-{base}"


class LocalObjectStorage:
    """Path-addressed blob store on a local or mounted volume."""

    def __init__(
        self,
        root: Path = UPLOAD_ROOT,
        public_base_url: str = PUBLIC_BASE_URL,
        max_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_bytes = max_bytes

    def public_url_for(self, path: str) -> str:
        return f"{self.public_base_url}/{quote(path)}"

    def resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return target

    def put(self, original_name: str, stream: BinaryIO) -> StoredObject:
        """
        Copy `stream` into storage without overwriting anything.

        Raises ValidationError when the payload exceeds the size limit and
        StorageError when the write itself fails.
        """
        stamp = int(time.time() * 1000)
        try:
            (self.root / UPLOAD_PREFIX).mkdir(parents=True, exist_ok=True)
            buffer = None
            for attempt in range(COLLISION_RETRIES):
                stored_name = build_object_name(original_name, now_ms=stamp + attempt)
                relative = f"{UPLOAD_PREFIX}/{stored_name}"
                dest_path = self.root / relative
                try:
                    # "xb" refuses to clobber an object that already holds this name.
                    buffer = dest_path.open("xb")
                    break
                except FileExistsError:
                    continue
            if buffer is None:
                raise StorageError(f"Object already exists: {relative}")
        except OSError as exc:
            raise StorageError(f"Storage write failed: {exc}") from exc

        bytes_written = 0
        try:
            with buffer:
                stream.seek(0)
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    bytes_written += len(chunk)
                    if bytes_written > self.max_bytes:
                        break
                    buffer.write(chunk)
        except OSError as exc:
            dest_path.unlink(missing_ok=True)
            raise StorageError(f"Storage write failed: {exc}") from exc

        if bytes_written > self.max_bytes:
            dest_path.unlink(missing_ok=True)
            raise ValidationError(f"File exceeds the upload limit of {self.max_bytes} bytes.")

        return StoredObject(
            path=relative,
            public_url=self.public_url_for(relative),
            stored_name=stored_name,
            size_bytes=bytes_written,
        )

    def delete(self, path: str) -> None:
        self.resolve(path).unlink(missing_ok=True)
