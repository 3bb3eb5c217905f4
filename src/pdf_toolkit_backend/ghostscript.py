from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import List

import anyio

from .configuration import GhostscriptSettings
from .errors import TransformationError

logger = logging.getLogger(__name__)


def build_command(settings: GhostscriptSettings, source: Path, destination: Path) -> List[str]:
    return [
        settings.binary,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS={settings.pdf_settings}",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        f"-sOutputFile={destination}",
        str(source),
    ]


def is_available(settings: GhostscriptSettings) -> bool:
    return shutil.which(settings.binary) is not None


async def compress(settings: GhostscriptSettings, source: Path, destination: Path) -> Path:
    """
    Rewrite ``source`` through Ghostscript's pdfwrite device into ``destination``.

    The process is killed if it outlives ``settings.timeout_seconds`` or if the
    awaiting task is cancelled (request deadline).

    Raises:
        TransformationError: If the binary is missing, times out, exits non-zero
            or produces no output
    """
    cmd = build_command(settings, source, destination)
    logger.info(f"Running Ghostscript with preset {settings.pdf_settings} on {source.name}")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise TransformationError(f"Ghostscript binary {settings.binary!r} not found") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=settings.timeout_seconds)
    except asyncio.TimeoutError as exc:
        await _kill(process)
        raise TransformationError(f"Ghostscript timed out after {settings.timeout_seconds}s") from exc
    except asyncio.CancelledError:
        await _kill(process)
        raise

    if process.returncode != 0:
        message = (stderr or stdout).decode("utf-8", errors="replace").strip()
        raise TransformationError(
            f"Ghostscript compression failed: {message or f'exit code {process.returncode}'}"
        )
    if not destination.exists():
        raise TransformationError("Compressed PDF not produced")
    return destination


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        # The request cancel scope would interrupt the wait otherwise
        with anyio.CancelScope(shield=True):
            await process.wait()
