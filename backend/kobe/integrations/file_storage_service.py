"""File storage service.

The ``local`` provider reads and writes real files below a configured root
directory. Cloud providers (S3, Dropbox, Google Drive) validate their
credentials and report where an upload would land; their download/list calls
raise until a client is wired in. ``mock`` fabricates everything.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .. import settings
from .base import BaseService, ServiceKind, now_ms, utc_now_iso
from .errors import ConfigurationError, NotFoundError, ProviderError

logger = logging.getLogger(__name__)

MOCK_STORAGE_URL = "https://mock-storage.example.com"

MIME_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "doc": "application/msword",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "ppt": "application/vnd.ms-powerpoint",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "txt": "text/plain",
    "csv": "text/csv",
    "html": "text/html",
    "json": "application/json",
    "xml": "application/xml",
    "zip": "application/zip",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

_MOCK_EXTENSIONS = (".pdf", ".docx", ".jpg", ".txt", ".csv")

# Simulated upload latency per provider (milliseconds)
_UPLOAD_DELAYS_MS = {"s3": 500, "dropbox": 600, "google-drive": 700, "local": 0, "mock": 300}


class StorageProvider(str, Enum):
    S3 = "s3"
    DROPBOX = "dropbox"
    GOOGLE_DRIVE = "google-drive"
    LOCAL = "local"
    MOCK = "mock"


def get_mime_type(file_name: str) -> str:
    """Infer a MIME type from the file extension."""
    if "." not in file_name:
        return DEFAULT_MIME_TYPE
    extension = file_name.rsplit(".", 1)[-1].lower()
    return MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


def _join(path: Optional[str], file_name: str) -> str:
    return f"{path or ''}{file_name}"


class FileStorageService(BaseService):
    kind = ServiceKind.FILE_STORAGE
    operations = ("upload_file", "download_file", "list_files")

    def __init__(self, local_root: Optional[Union[str, Path]] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.local_root = Path(local_root or settings.LOCAL_STORAGE_ROOT)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def upload_file(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require(params, "file", "fileName", message="File and fileName are required")
        provider = self._select_provider(params, StorageProvider)
        logger.info(f"Uploading file {params['fileName']} to {provider.value}")
        self._check_credentials(provider, params)

        await self._simulate_delay(_UPLOAD_DELAYS_MS[provider.value])

        path = params.get("path")
        file_name = params["fileName"]
        config = params.get("providerConfig") or {}

        if provider is StorageProvider.S3:
            key = _join(path, file_name)
            return {
                "status": "success",
                "provider": provider.value,
                "url": f"https://{config['bucket']}.s3.amazonaws.com/{key}",
                "key": key,
                "bucket": config["bucket"],
            }
        if provider is StorageProvider.DROPBOX:
            return {
                "status": "success",
                "provider": provider.value,
                "path": f"/{_join(path, file_name)}",
                "id": f"id:{now_ms()}",
                "link": f"https://www.dropbox.com/home/{_join(path, file_name)}",
            }
        if provider is StorageProvider.GOOGLE_DRIVE:
            file_id = f"gdrive_{now_ms()}"
            return {
                "status": "success",
                "provider": provider.value,
                "id": file_id,
                "name": file_name,
                "mimeType": get_mime_type(file_name),
                "webViewLink": f"https://drive.google.com/file/d/{file_id}/view",
            }
        if provider is StorageProvider.LOCAL:
            return await self._upload_local(path, file_name, params["file"])

        logger.debug("Using mock storage provider for simulation")
        return {
            "status": "success",
            "provider": provider.value,
            "fileName": file_name,
            "path": path or "/",
            "url": f"{MOCK_STORAGE_URL}/{_join(path, file_name)}",
            "timestamp": utc_now_iso(),
        }

    async def download_file(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require(params, "fileId", message="File ID or path is required")
        provider = self._select_provider(params, StorageProvider)
        logger.info(f"Downloading file {params['fileId']} from {provider.value}")
        self._check_credentials(provider, params)

        file_id = str(params["fileId"])
        if provider is StorageProvider.LOCAL:
            return await self._download_local(file_id)
        if provider is not StorageProvider.MOCK:
            raise self._not_wired(provider, "download_file")

        await self._simulate_delay(300)
        return {
            "status": "success",
            "provider": provider.value,
            "fileId": file_id,
            "fileName": file_id.split("/")[-1],
            "data": "Mock file content for simulation purposes",
            "mimeType": get_mime_type(file_id),
            "timestamp": utc_now_iso(),
        }

    async def list_files(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require(params, "path", message="Path is required")
        provider = self._select_provider(params, StorageProvider)
        logger.info(f"Listing files from {params['path']} on {provider.value}")
        self._check_credentials(provider, params)

        path = str(params["path"])
        if provider is StorageProvider.LOCAL:
            files = await asyncio.to_thread(self._list_local, path)
        elif provider is StorageProvider.MOCK:
            await self._simulate_delay(200)
            files = self._mock_listing(path)
        else:
            raise self._not_wired(provider, "list_files")

        return {
            "status": "success",
            "provider": provider.value,
            "path": path,
            "files": files,
            "totalCount": len(files),
        }

    # ------------------------------------------------------------------
    # Provider helpers
    # ------------------------------------------------------------------

    def _check_credentials(self, provider: StorageProvider, params: Dict[str, Any]) -> None:
        config = params.get("providerConfig") or {}
        if provider is StorageProvider.S3 and not config.get("bucket"):
            raise ConfigurationError("S3 bucket is required", service=self.kind.value)
        if provider is StorageProvider.DROPBOX and not config.get("accessToken"):
            raise ConfigurationError("Dropbox access token is required", service=self.kind.value)
        if provider is StorageProvider.GOOGLE_DRIVE and not config.get("accessToken"):
            raise ConfigurationError("Google Drive access token is required", service=self.kind.value)

    def _not_wired(self, provider: StorageProvider, operation: str) -> ProviderError:
        return ProviderError(
            f"{operation} has no client wired in for provider {provider.value}",
            service=self.kind.value,
            provider=provider.value,
        )

    def _resolve_local(self, relative: str) -> Path:
        root = self.local_root.resolve()
        target = (root / relative.lstrip("/")).resolve()
        if target != root and root not in target.parents:
            raise ConfigurationError(
                f"Path escapes local storage root: {relative}", service=self.kind.value
            )
        return target

    async def _upload_local(self, path: Optional[str], file_name: str, content: Any) -> Dict[str, Any]:
        relative = _join(path, file_name)
        target = self._resolve_local(relative)
        if isinstance(content, bytes):
            data = content
        elif isinstance(content, str):
            data = content.encode("utf-8")
        else:
            data = json.dumps(content).encode("utf-8")

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        return {
            "status": "success",
            "provider": StorageProvider.LOCAL.value,
            "path": f"/{relative.lstrip('/')}",
            "size": len(data),
        }

    async def _download_local(self, file_id: str) -> Dict[str, Any]:
        target = self._resolve_local(file_id)
        if not target.is_file():
            raise NotFoundError(f"File not found: {file_id}", service=self.kind.value)
        data = await asyncio.to_thread(target.read_bytes)
        try:
            content: Union[str, bytes] = data.decode("utf-8")
        except UnicodeDecodeError:
            content = data
        return {
            "status": "success",
            "provider": StorageProvider.LOCAL.value,
            "fileId": file_id,
            "fileName": target.name,
            "data": content,
            "mimeType": get_mime_type(target.name),
            "size": len(data),
        }

    def _list_local(self, path: str) -> List[Dict[str, Any]]:
        directory = self._resolve_local(path)
        if not directory.is_dir():
            raise NotFoundError(f"Directory not found: {path}", service=self.kind.value)

        files = []
        for entry in sorted(directory.iterdir()):
            stat = entry.stat()
            is_folder = entry.is_dir()
            files.append({
                "id": str(entry.relative_to(self.local_root.resolve())),
                "name": entry.name,
                "path": f"{path.rstrip('/')}/{entry.name}",
                "type": "folder" if is_folder else "file",
                "mimeType": "folder" if is_folder else get_mime_type(entry.name),
                "size": None if is_folder else stat.st_size,
                "modifiedTime": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
            })
        return files

    def _mock_listing(self, path: str) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        files = []
        for i in range(self.rng.randint(2, 11)):
            is_folder = i % 5 == 0
            name = f"Folder {i}" if is_folder else f"Document {i}{_MOCK_EXTENSIONS[i % 5]}"
            files.append({
                "id": f"file_{i}_{now_ms()}",
                "name": name,
                "path": f"{path}/{name}",
                "type": "folder" if is_folder else "file",
                "mimeType": "folder" if is_folder else get_mime_type(name),
                "size": None if is_folder else self.rng.randrange(1_000_000),
                "modifiedTime": (now - timedelta(days=self.rng.randrange(30))).isoformat(),
            })
        return files
