from collections.abc import Sequence
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from app.models.wonderspin import Wonderspin
from app.models.wonderspin_pity import WonderspinPity
from app.schemas.common import APIResponse
from app.schemas.wonderspin import WonderspinActiveUpdate, WonderspinCreate, WonderspinData
from app.services.wonderspin import WonderspinService

router = APIRouter(prefix="/wonderspins", tags=["wonderspins"])


@router.get("/")
async def get_active_wonderspins(
    user_id: Annotated[int, Query()], service: Annotated[WonderspinService, Depends()]
) -> APIResponse[list[WonderspinData]]:
    """Get all active Wonderspins with the user's pity counters and current odds."""
    data = await service.get_active_wonderspin_data(user_id)
    return APIResponse(data=data)


@router.post("/")
async def create_wonderspin(
    wonderspin: WonderspinCreate, service: Annotated[WonderspinService, Depends()]
) -> APIResponse[Wonderspin]:
    created_wonderspin = await service.create_wonderspin(wonderspin)
    return APIResponse(data=created_wonderspin, message="Wonderspin added successfully")


@router.get("/{wonderspin_id}")
async def get_wonderspin(
    wonderspin_id: int, service: Annotated[WonderspinService, Depends()]
) -> APIResponse[Wonderspin]:
    wonderspin = await service.get_wonderspin(wonderspin_id)
    if not wonderspin:
        raise HTTPException(status_code=404, detail="Wonderspin not found")
    return APIResponse(data=wonderspin)


@router.put("/{wonderspin_id}/active")
async def set_wonderspin_active(
    wonderspin_id: int,
    update: WonderspinActiveUpdate,
    service: Annotated[WonderspinService, Depends()],
) -> APIResponse[Wonderspin]:
    wonderspin = await service.set_wonderspin_active(wonderspin_id, update.active)
    if not wonderspin:
        raise HTTPException(status_code=404, detail="Wonderspin not found")
    state = "activated" if update.active else "deactivated"
    return APIResponse(data=wonderspin, message=f"Wonderspin {state}")


@router.get("/pity/{user_id}")
async def get_user_pity(
    user_id: int, service: Annotated[WonderspinService, Depends()]
) -> APIResponse[Sequence[WonderspinPity]]:
    """Get a user's pity counters for every Wonderspin they have rolled."""
    pity = await service.get_user_pity(user_id)
    return APIResponse(data=pity)
