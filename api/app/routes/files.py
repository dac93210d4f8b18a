from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from api.app.dependencies import get_artifacts, get_current_user
from models.user import User
from services.artifact_store import LocalArtifactStore

router = APIRouter(tags=["files"])

MEDIA_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".webp": "image/webp"}


@router.get("/files/{owner_id}/{filename}")
async def get_artifact_file(
    owner_id: uuid.UUID,
    filename: str,
    user: User = Depends(get_current_user),
    artifacts: LocalArtifactStore = Depends(get_artifacts),
):
    """Serve a processed image to its owner."""
    if owner_id != user.id:
        raise HTTPException(status_code=404, detail="File not found")

    path = artifacts.path_for(filename, owner_id)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File missing")

    return FileResponse(
        path=str(path),
        media_type=MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream"),
        filename=path.name,
    )
