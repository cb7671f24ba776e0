"""
Contract document storage.

Blobs live in a private bucket directory keyed
``<company>/<contract>/<filename>``. Readers never get a raw path; they get a
time-limited URL signed with the application secret.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import urlencode
import base64
import binascii
import logging
import re

from signdesk.core.config import settings
from signdesk.core.results import StorageError
from signdesk.core.security import sign_path

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z+.-]+;base64,")


def contract_path(company_id: Optional[int], contract_id: str, filename: str) -> str:
    prefix = str(company_id) if company_id else "no-company"
    return f"{prefix}/{contract_id}/{filename}"


def decode_image_payload(image_base64: str) -> bytes:
    """Decode a base64 raster, with or without a data URL prefix."""
    data = DATA_URL_PREFIX.sub("", image_base64.strip())
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Signature image is not valid base64: {e}")


class StorageService:
    """Local filesystem bucket with signed retrieval URLs"""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None,
                 url_ttl_seconds: Optional[int] = None):
        self.root = Path(root or settings.STORAGE_ROOT)
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.url_ttl_seconds = url_ttl_seconds or settings.STORAGE_URL_TTL_SECONDS

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if self.root.resolve() not in full.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return full

    def put_bytes(self, path: str, data: bytes) -> str:
        """Write (or overwrite) a blob and return its handle."""
        try:
            target = self._resolve(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Upload failed for {path}: {e}")
            raise StorageError(f"Failed to store {path}: {e}")
        logger.info(f"Stored {path} ({len(data)} bytes)")
        return path

    def upload_contract_pdf(self, company_id: Optional[int], contract_id: str,
                            filename: str, pdf_bytes: bytes) -> str:
        return self.put_bytes(contract_path(company_id, contract_id, filename), pdf_bytes)

    def upload_signature_image(self, company_id: Optional[int], contract_id: str,
                               image_bytes: bytes) -> str:
        return self.put_bytes(contract_path(company_id, contract_id, "signature.png"), image_bytes)

    def get_bytes(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except FileNotFoundError:
            raise StorageError(f"Stored file not found: {path}")
        except OSError as e:
            logger.error(f"Download failed for {path}: {e}")
            raise StorageError(f"Failed to read {path}: {e}")

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except StorageError:
            return False

    def delete(self, path: str) -> bool:
        try:
            self._resolve(path).unlink()
            logger.info(f"Deleted {path}")
            return True
        except FileNotFoundError:
            logger.warning(f"Delete failed - not found: {path}")
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")

    def presign_get(self, path: str, ttl_seconds: Optional[int] = None) -> str:
        """Time-limited URL served by the /files route."""
        params = sign_path(path, ttl_seconds or self.url_ttl_seconds)
        return f"{self.base_url}/api/files/{path}?{urlencode(params)}"
