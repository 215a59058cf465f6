from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, require_capability
from campus_platform.milestones import milestone_service as service
from campus_platform.milestones.milestone_schemas import MilestoneCreate, MilestoneUpdate

router = APIRouter(prefix="/api/milestone", tags=["Milestones"])


@router.post("/chain/{chain_id}", status_code=201)
async def create_milestone(
    chain_id: str,
    data: MilestoneCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone", "create"))
):
    """
    Add a milestone. A published chain is moved back to editing first.
    """
    result = await service.create_milestone(db, user, chain_id, data.model_dump())
    return {"success": True, **result}


@router.get("/chain/{chain_id}")
async def get_milestones_by_chain(
    chain_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone", "read"))
):
    result = await service.get_milestones_by_chain(db, user, chain_id)
    return {"success": True, "count": len(result["milestones"]), **result}


@router.get("/{milestone_id}/stats")
async def get_milestone_stats(
    milestone_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone", "view_stats"))
):
    return {"success": True, "stats": await service.get_milestone_stats(db, milestone_id)}


@router.get("/{milestone_id}")
async def get_milestone(
    milestone_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone", "read"))
):
    return {"success": True, "milestone": await service.get_milestone(db, user, milestone_id)}


@router.patch("/{milestone_id}")
async def update_milestone(
    milestone_id: str,
    data: MilestoneUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone", "edit"))
):
    result = await service.update_milestone(db, user, milestone_id, data.model_dump(exclude_unset=True))
    return {"success": True, **result}


@router.delete("/{milestone_id}")
async def delete_milestone(
    milestone_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone", "delete"))
):
    await service.delete_milestone(db, user, milestone_id)
    return {"success": True, "message": "Milestone deleted successfully"}
