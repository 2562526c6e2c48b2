"""Upload sinks: where a finished JPEG goes once the pipeline is done with it.

A sink is any ``async (ImageFile, CameraSlot) -> Optional[str]`` callable; the
returned string is recorded as the photo's remote URL. Raising means the
upload failed.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiohttp

from ..core.errors import UploadSinkError
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .models import CameraSlot, ImageFile


class DirectoryUploadSink:
    """Stores uploads under ``<root>/<slot>/<name>``, never overwriting."""

    def __init__(self, root: Path | str, *, logger: LoggerLike = None) -> None:
        self.root = Path(root)
        self.logger = ensure_structured_logger(logger, component="DirectorySink", fallback_name="DirectorySink")

    async def __call__(self, file: ImageFile, slot: CameraSlot) -> str:
        directory = self.root / slot.value
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

        name = Path(file.name).name or "upload.jpg"
        stem, suffix = Path(name).stem, Path(name).suffix
        counter = 0
        while True:
            candidate = directory / (name if counter == 0 else f"{stem}-{counter}{suffix}")
            try:
                async with aiofiles.open(candidate, "xb") as fh:
                    await fh.write(file.data)
                break
            except FileExistsError:
                counter += 1

        relative = candidate.relative_to(self.root).as_posix()
        self.logger.info("Stored %s (%d bytes)", relative, file.size)
        return relative


class HttpUploadSink:
    """POSTs each file as multipart form data (``file`` and ``slot`` fields).

    A JSON response's ``url`` field, when present, becomes the remote URL.
    """

    def __init__(
        self,
        url: str,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = dict(headers or {})
        self._session = session
        self._owns_session = session is None
        self.logger = ensure_structured_logger(logger, component="HttpSink", fallback_name="HttpSink")

    async def __aenter__(self) -> "HttpUploadSink":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            session, self._session = self._session, None
            await session.close()

    async def __call__(self, file: ImageFile, slot: CameraSlot) -> Optional[str]:
        if self._session is None:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                return await self._post(session, file, slot)
        return await self._post(self._session, file, slot)

    async def _post(self, session: aiohttp.ClientSession, file: ImageFile, slot: CameraSlot) -> Optional[str]:
        form = aiohttp.FormData()
        form.add_field("file", file.data, filename=file.name, content_type=file.mime_type or "application/octet-stream")
        form.add_field("slot", slot.value)

        self.logger.debug("POST %s (%s, %d bytes)", self.url, file.name, file.size)
        async with session.post(self.url, data=form, headers=self.headers) as response:
            if response.status >= 300:
                body = await response.text()
                raise UploadSinkError(f"Upload rejected ({response.status}): {body[:200]}")
            payload = await self._read_json(response)

        remote_url = payload.get("url") if isinstance(payload, dict) else None
        self.logger.info("Uploaded %s for %s (%s)", file.name, slot.value, remote_url or "no url")
        return remote_url

    async def _read_json(self, response: aiohttp.ClientResponse) -> Any:
        if response.content_type != "application/json":
            return None
        try:
            return await response.json()
        except (aiohttp.ContentTypeError, ValueError) as exc:
            self.logger.warning("Upload response was not valid JSON: %s", exc)
            return None


__all__ = ["DirectoryUploadSink", "HttpUploadSink"]
