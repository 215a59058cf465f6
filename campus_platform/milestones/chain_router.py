from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, require_capability
from campus_platform.milestones import chain_service as service
from campus_platform.milestones.milestone_models import ChainStatus
from campus_platform.milestones.milestone_schemas import ChainCreate, ChainUpdate

router = APIRouter(prefix="/api/milestone-chain", tags=["Milestone Chains"])


@router.post("", status_code=201)
async def create_chain(
    data: ChainCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "create"))
):
    chain = await service.create_chain(db, user, data.model_dump())
    return {"success": True, "message": "Milestone chain created successfully", "chain": chain}


@router.get("")
async def list_chains(
    status: Optional[ChainStatus] = None,
    academic_year: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "read"))
):
    chains = await service.list_chains(db, user, status.value if status else None, academic_year)
    return {"success": True, "count": len(chains), "chains": chains}


@router.get("/active")
async def get_active_chain(
    academic_year: str = Query(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "edit"))
):
    """
    The chain currently being edited for an academic year
    """
    return {"success": True, "chain": await service.get_active_chain(db, academic_year)}


@router.get("/{chain_id}/progress")
async def get_chain_progress(
    chain_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "view_progress"))
):
    return {"success": True, **(await service.get_chain_progress(db, user, chain_id))}


@router.patch("/{chain_id}")
async def update_chain(
    chain_id: str,
    data: ChainUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "edit"))
):
    chain = await service.update_chain(db, user, chain_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Chain updated", "chain": chain}


@router.post("/{chain_id}/publish")
async def publish_chain(
    chain_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "publish"))
):
    chain = await service.publish_chain(db, user, chain_id)
    return {"success": True, "message": "Chain published successfully", "chain": chain}


@router.post("/{chain_id}/archive")
async def archive_chain(
    chain_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "edit"))
):
    chain = await service.archive_chain(db, user, chain_id)
    return {"success": True, "message": "Chain archived", "chain": chain}


@router.delete("/{chain_id}")
async def delete_chain(
    chain_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("milestone_chain", "delete"))
):
    await service.delete_chain(db, user, chain_id)
    return {"success": True, "message": "Chain and its milestones deleted successfully"}
