"""Report file storage.

Handles the object-storage side of a draft: deterministic storage keys,
upload targets handed back to clients, and byte retrieval for validation.
Local filesystem in dev; the put/retrieve/exists/delete interface is what an
S3-compatible backend implements in production.
"""

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from uuid import UUID

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(name: str) -> str:
    """Strip directories and replace characters unsafe in object keys."""
    base = PurePosixPath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "report"


@dataclass(frozen=True)
class UploadTarget:
    """Where the client sends the report file for a draft."""

    storage_key: str
    method: str
    url: str


class ReportStorageService:
    """Filesystem-backed report storage keyed by ``reports/{report_id}/{file}``."""

    def __init__(self, storage_root: str) -> None:
        self._root = Path(storage_root)
        self._root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def storage_key_for(report_id: UUID, file_name: str) -> str:
        return f"reports/{report_id}/{sanitize_filename(file_name)}"

    @staticmethod
    def upload_target(report_id: UUID, storage_key: str) -> UploadTarget:
        return UploadTarget(
            storage_key=storage_key,
            method="PUT",
            url=f"/v1/reports/{report_id}/file",
        )

    def _path(self, storage_key: str) -> Path:
        path = (self._root / storage_key).resolve()
        if self._root.resolve() not in path.parents:
            msg = f"Storage key escapes storage root: {storage_key}"
            raise ValueError(msg)
        return path

    def put(self, storage_key: str, content: bytes) -> str:
        """Write bytes under the key and return their 'sha256:<hex>' digest.

        Raises:
            ValueError: If content is empty.
        """
        if len(content) == 0:
            msg = "Report file must not be empty."
            raise ValueError(msg)
        dest = self._path(storage_key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        return f"sha256:{hashlib.sha256(content).hexdigest()}"

    def exists(self, storage_key: str) -> bool:
        return self._path(storage_key).is_file()

    def retrieve(self, storage_key: str) -> bytes:
        """Read stored bytes.

        Raises:
            FileNotFoundError: If nothing was uploaded under the key.
        """
        path = self._path(storage_key)
        if not path.is_file():
            msg = f"Report file not found at storage key: {storage_key}"
            raise FileNotFoundError(msg)
        return path.read_bytes()

    def delete(self, storage_key: str) -> bool:
        path = self._path(storage_key)
        if not path.is_file():
            return False
        path.unlink()
        return True
