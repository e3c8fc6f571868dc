import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app_builder.api.deps import get_sandboxes, get_settings, get_store
from app_builder.config import Settings
from app_builder.errors import FragmentNotFound
from app_builder.sandbox.handle import SandboxProvider
from app_builder.sandbox.utils import restore_fragment
from app_builder.storage.base import MessageStore


logger = logging.getLogger("app_builder.api.fragments")

router = APIRouter(prefix="/api/fragments", tags=["fragments"])


@router.post("/{fragment_id}/restore")
async def restore(
    fragment_id: str,
    settings: Settings = Depends(get_settings),
    store: MessageStore = Depends(get_store),
    sandboxes: SandboxProvider = Depends(get_sandboxes),
) -> dict[str, Any]:
    """Re-create an expired preview from the fragment's stored files."""
    try:
        return await restore_fragment(store, sandboxes, fragment_id, settings)
    except FragmentNotFound:
        raise
    except Exception as e:
        logger.error("restore[%s] failed: %s", fragment_id, str(e))
        raise HTTPException(status_code=502, detail=f"Failed to restore fragment: {e}")
