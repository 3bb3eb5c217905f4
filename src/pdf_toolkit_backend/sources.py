"""
Source references and their materialization into temporary files.

Each reference knows how to copy its bytes to a destination path. Copies stop
as soon as ``max_bytes`` is crossed; the pipeline then compares the returned
size against the ceiling and rejects the source.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path

import httpx
from starlette.datastructures import UploadFile

from .errors import InvalidEncoding, SourceUnavailable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

_DATA_URL_PREFIX = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


class SourceReference:
    """A request input that can be copied to a local file."""

    kind = "source"

    @property
    def label(self) -> str:
        raise NotImplementedError

    async def materialize(self, destination: Path, *, client: httpx.AsyncClient, max_bytes: int) -> int:
        """
        Copy the source to ``destination``.

        Returns:
            Number of bytes written. A value greater than ``max_bytes`` means
            the copy was stopped early because the ceiling was crossed.
        """
        raise NotImplementedError


class UrlSource(SourceReference):
    kind = "url"

    def __init__(self, url: str) -> None:
        self.url = url

    @property
    def label(self) -> str:
        return self.url

    async def materialize(self, destination: Path, *, client: httpx.AsyncClient, max_bytes: int) -> int:
        logger.info(f"Downloading source {self.url}")
        total = 0
        try:
            async with client.stream("GET", self.url) as response:
                response.raise_for_status()
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    return int(declared)
                with destination.open("wb") as buffer:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        total += len(chunk)
                        if total > max_bytes:
                            break
                        buffer.write(chunk)
        except httpx.TimeoutException as exc:
            raise SourceUnavailable(f"Timed out downloading {self.url}", source=self.url) from exc
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailable(
                f"Download of {self.url} failed with status {exc.response.status_code}",
                source=self.url,
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Could not download {self.url}: {exc}", source=self.url) from exc
        return total


class UploadSource(SourceReference):
    kind = "upload"

    def __init__(self, upload: UploadFile) -> None:
        self.upload = upload

    @property
    def label(self) -> str:
        return self.upload.filename or "upload.pdf"

    async def materialize(self, destination: Path, *, client: httpx.AsyncClient, max_bytes: int) -> int:
        total = 0
        try:
            with destination.open("wb") as buffer:
                while chunk := await self.upload.read(CHUNK_SIZE):
                    total += len(chunk)
                    if total > max_bytes:
                        break
                    buffer.write(chunk)
        finally:
            await self.upload.close()
        return total


class Base64Source(SourceReference):
    kind = "base64"

    def __init__(self, data: str) -> None:
        self.data = data

    @property
    def label(self) -> str:
        return "base64"

    async def materialize(self, destination: Path, *, client: httpx.AsyncClient, max_bytes: int) -> int:
        payload = _WHITESPACE.sub("", _DATA_URL_PREFIX.sub("", self.data.strip()))
        # Decoded size is 3/4 of the encoded length; skip decoding hopeless payloads
        estimated = len(payload) * 3 // 4
        if estimated > max_bytes + 2:
            return estimated
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidEncoding(f"Invalid base64 payload: {exc}") from exc
        if not raw:
            raise InvalidEncoding("Base64 payload decoded to zero bytes")
        if len(raw) <= max_bytes:
            destination.write_bytes(raw)
        return len(raw)
