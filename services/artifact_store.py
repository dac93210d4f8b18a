"""
Artifact storage for processed images.

Local filesystem implementation, one directory per owner. Other backends
only need to satisfy the ArtifactStore protocol.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ArtifactStore(Protocol):
    async def put(self, data: bytes, name: str, owner: uuid.UUID) -> str:
        """Store bytes and return a URL the owner can fetch them from."""
        ...

    async def delete(self, name: str, owner: uuid.UUID) -> None:
        ...


class LocalArtifactStore:
    def __init__(self, root: str | Path, base_url: str = "/v1/files") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def path_for(self, name: str, owner: uuid.UUID) -> Path:
        # only the final path component, never let a name escape the owner dir
        return self.root / str(owner) / Path(name).name

    def url_for(self, name: str, owner: uuid.UUID) -> str:
        return f"{self.base_url}/{owner}/{Path(name).name}"

    async def put(self, data: bytes, name: str, owner: uuid.UUID) -> str:
        path = self.path_for(name, owner)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("Artifact stored %s (%d bytes)", path, len(data))
        return self.url_for(name, owner)

    async def delete(self, name: str, owner: uuid.UUID) -> None:
        path = self.path_for(name, owner)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.info("Artifact deleted %s", path)
