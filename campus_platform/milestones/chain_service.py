from datetime import datetime
from typing import List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from campus_platform.core.audit import log_audit
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import ConflictError, InvalidStateError, NotFoundError
from campus_platform.core.permissions import UserContext
from campus_platform.milestones.milestone_models import (
    ChainEditor, ChainStatus, MilestoneChain, MilestoneStatus
)
from campus_platform.realtime.manager import notifier, ADMIN_ROOM, milestone_chain_room

logger = logging.getLogger(__name__)


async def get_chain(db: AsyncIOMotorDatabase, chain_id: str) -> dict:
    chain = await db.milestone_chains.find_one({"chain_id": chain_id})
    if not chain:
        raise NotFoundError("Milestone chain not found")
    return chain


async def touch_editor(db: AsyncIOMotorDatabase, chain_id: str, user: UserContext):
    """Record that this user just worked on the chain"""
    now = datetime.utcnow()
    result = await db.milestone_chains.update_one(
        {"chain_id": chain_id, "editors.user_id": user.user_id},
        {"$set": {"editors.$.last_edited_at": now}}
    )
    if result.matched_count == 0:
        editor = ChainEditor(user_id=user.user_id, full_name=user.full_name, last_edited_at=now)
        await db.milestone_chains.update_one(
            {"chain_id": chain_id},
            {"$push": {"editors": editor.model_dump()}}
        )


async def revert_if_published(db: AsyncIOMotorDatabase, chain_id: str) -> bool:
    """Flip a published chain back to editing. Returns True when it was published."""
    result = await db.milestone_chains.update_one(
        {"chain_id": chain_id, "status": ChainStatus.PUBLISHED.value},
        {
            "$set": {
                "status": ChainStatus.EDITING.value,
                "published_at": None,
                "published_by": None,
                "published_milestones": 0,
                "updated_at": datetime.utcnow(),
            },
            "$inc": {"version": 1},
        }
    )
    return result.modified_count > 0


async def mark_structure_changed(
    db: AsyncIOMotorDatabase,
    chain_id: str,
    user: UserContext,
    total_delta: int = 0
) -> bool:
    """
    Called around every milestone create/update/delete.

    Reverts a published chain to editing and bumps the version so an
    in-flight publish that read the old version fails its conditional write.
    Returns True when the chain had to be reverted.
    """
    reverted = await revert_if_published(db, chain_id)

    inc = {"version": 1}
    if total_delta:
        inc["total_milestones"] = total_delta
    await db.milestone_chains.update_one(
        {"chain_id": chain_id},
        {"$inc": inc, "$set": {"updated_at": datetime.utcnow()}}
    )

    await touch_editor(db, chain_id, user)
    return reverted


# ==================== CHAIN CRUD ====================

async def create_chain(db: AsyncIOMotorDatabase, user: UserContext, data: dict) -> dict:
    now = datetime.utcnow()
    chain = MilestoneChain(
        chain_id=generate_id("CHN"),
        created_by=user.user_id,
        editors=[ChainEditor(user_id=user.user_id, full_name=user.full_name, last_edited_at=now)],
        **data
    )

    doc = chain.model_dump()
    await db.milestone_chains.insert_one(doc)
    logger.info("Milestone chain %s created by %s", chain.chain_id, user.user_id)

    await notifier.emit(ADMIN_ROOM, "chain-created", {"chain_id": chain.chain_id, "name": chain.name})
    return serialize_doc(doc)


async def list_chains(
    db: AsyncIOMotorDatabase,
    user: UserContext,
    status: Optional[str] = None,
    academic_year: Optional[str] = None
) -> List[dict]:
    query = {"is_active": True}
    if status:
        query["status"] = status
    if academic_year:
        query["academic_year"] = academic_year
    if not user.is_admin:
        query["status"] = ChainStatus.PUBLISHED.value

    chains = await db.milestone_chains.find(query).sort("created_at", -1).to_list(length=None)
    return serialize_many(chains)


async def get_active_chain(db: AsyncIOMotorDatabase, academic_year: str) -> dict:
    chain = await db.milestone_chains.find_one(
        {"academic_year": academic_year, "status": ChainStatus.EDITING.value, "is_active": True},
        sort=[("created_at", -1)]
    )
    if not chain:
        raise NotFoundError(f"No chain is being edited for {academic_year}")
    return serialize_doc(chain)


async def get_chain_progress(db: AsyncIOMotorDatabase, user: UserContext, chain_id: str) -> dict:
    chain = await get_chain(db, chain_id)
    milestones = await db.milestones.find({"chain_id": chain_id}).sort("order", 1).to_list(length=None)

    if user.can("milestone_chain", "edit"):
        await touch_editor(db, chain_id, user)
        chain = await get_chain(db, chain_id)

    draft = sum(1 for m in milestones if m["status"] == MilestoneStatus.DRAFT.value)
    return {
        "chain": serialize_doc(chain),
        "milestones": serialize_many(milestones),
        "progress": {
            "total": len(milestones),
            "draft": draft,
            "published": len(milestones) - draft,
        },
    }


async def update_chain(db: AsyncIOMotorDatabase, user: UserContext, chain_id: str, data: dict) -> dict:
    chain = await get_chain(db, chain_id)

    changes = {k: v for k, v in data.items() if v is not None}
    if not changes:
        return serialize_doc(chain)

    start = changes.get("start_date", chain["start_date"])
    end = changes.get("end_date", chain["end_date"])
    if end < start:
        raise InvalidStateError("End date must be on or after start date")

    changes["updated_at"] = datetime.utcnow()
    await db.milestone_chains.update_one({"chain_id": chain_id}, {"$set": changes})
    await touch_editor(db, chain_id, user)
    return serialize_doc(await get_chain(db, chain_id))


# ==================== PUBLISH WORKFLOW ====================

async def set_milestone_status(
    db: AsyncIOMotorDatabase,
    milestone_ids: List[str],
    status: MilestoneStatus,
    user: Optional[UserContext] = None,
    now: Optional[datetime] = None
):
    if not milestone_ids:
        return
    published = status == MilestoneStatus.PUBLISHED
    await db.milestones.update_many(
        {"milestone_id": {"$in": milestone_ids}},
        {"$set": {
            "status": status.value,
            "published_by": user.user_id if published and user else None,
            "published_at": now if published else None,
        }}
    )


async def _release_claim(db: AsyncIOMotorDatabase, chain_id: str):
    await db.milestone_chains.update_one(
        {"chain_id": chain_id, "status": ChainStatus.PUBLISHING.value},
        {"$set": {"status": ChainStatus.EDITING.value, "updated_at": datetime.utcnow()}, "$inc": {"version": 1}}
    )


async def publish_chain(db: AsyncIOMotorDatabase, user: UserContext, chain_id: str) -> dict:
    """
    Publish the chain and every milestone in it.

    The chain is first claimed (editing -> publishing, conditional on the
    version that was read), so only one caller at a time ever touches the
    milestones. Any structural edit bumps the version while the claim is
    held; the final flip then misses, the claimant puts its milestones back
    to draft and the chain returns to editing.
    """
    chain = await get_chain(db, chain_id)

    if chain["status"] == ChainStatus.PUBLISHED.value:
        raise ConflictError("Chain is already published")
    if chain["status"] == ChainStatus.PUBLISHING.value:
        raise ConflictError("Chain is being published by another request, please retry")
    if chain["status"] == ChainStatus.ARCHIVED.value:
        raise InvalidStateError("Archived chains cannot be published")

    milestones = await db.milestones.find({"chain_id": chain_id}, {"milestone_id": 1, "status": 1}).to_list(length=None)
    if not milestones:
        raise InvalidStateError("Cannot publish empty chain. Please add milestones first.")

    claimed = await db.milestone_chains.update_one(
        {"chain_id": chain_id, "version": chain["version"], "status": ChainStatus.EDITING.value},
        {"$set": {"status": ChainStatus.PUBLISHING.value}, "$inc": {"version": 1}}
    )
    if claimed.matched_count == 0:
        current = await get_chain(db, chain_id)
        if current["status"] == ChainStatus.PUBLISHED.value:
            raise ConflictError("Chain is already published")
        raise ConflictError("Chain was modified while publishing, please retry")

    claim_version = chain["version"] + 1
    now = datetime.utcnow()
    drafts = [m["milestone_id"] for m in milestones if m["status"] != MilestoneStatus.PUBLISHED.value]

    try:
        await set_milestone_status(db, drafts, MilestoneStatus.PUBLISHED, user, now)
        result = await db.milestone_chains.update_one(
            {"chain_id": chain_id, "version": claim_version, "status": ChainStatus.PUBLISHING.value},
            {
                "$set": {
                    "status": ChainStatus.PUBLISHED.value,
                    "published_by": user.user_id,
                    "published_at": now,
                    "total_milestones": len(milestones),
                    "published_milestones": len(milestones),
                    "updated_at": now,
                },
                "$inc": {"version": 1},
            }
        )
    except PyMongoError:
        await set_milestone_status(db, drafts, MilestoneStatus.DRAFT)
        await _release_claim(db, chain_id)
        raise

    if result.matched_count == 0:
        await set_milestone_status(db, drafts, MilestoneStatus.DRAFT)
        await _release_claim(db, chain_id)
        raise ConflictError("Chain was modified while publishing, please retry")

    await log_audit(db, user, "publish_chain", "milestone_chain", chain_id, {"milestones": len(milestones)})
    logger.info("Chain %s published with %d milestones", chain_id, len(milestones))

    published = serialize_doc(await get_chain(db, chain_id))
    await notifier.broadcast("chain-published", {"chain_id": chain_id, "name": published["name"]})
    await notifier.emit(milestone_chain_room(chain_id), "chain-published", {"chain_id": chain_id})
    return published


async def archive_chain(db: AsyncIOMotorDatabase, user: UserContext, chain_id: str) -> dict:
    chain = await get_chain(db, chain_id)
    if chain["status"] == ChainStatus.ARCHIVED.value:
        raise ConflictError("Chain is already archived")

    await db.milestone_chains.update_one(
        {"chain_id": chain_id},
        {"$set": {"status": ChainStatus.ARCHIVED.value, "updated_at": datetime.utcnow()}, "$inc": {"version": 1}}
    )
    await log_audit(db, user, "archive_chain", "milestone_chain", chain_id)
    return serialize_doc(await get_chain(db, chain_id))


async def delete_chain(db: AsyncIOMotorDatabase, user: UserContext, chain_id: str):
    chain = await get_chain(db, chain_id)

    milestone_ids = await db.milestones.distinct("milestone_id", {"chain_id": chain_id})
    referenced = await db.student_milestones.find_one({
        "$or": [{"chain_id": chain_id}, {"milestone_id": {"$in": milestone_ids}}]
    })
    if referenced:
        raise ConflictError("Cannot delete chain with student submissions. Archive it instead.")

    await db.milestones.delete_many({"chain_id": chain_id})
    await db.milestone_chains.delete_one({"chain_id": chain_id})

    await log_audit(db, user, "delete_chain", "milestone_chain", chain_id, {
        "name": chain.get("name"), "milestones": len(milestone_ids),
    })
    logger.info("Chain %s deleted with %d milestones", chain_id, len(milestone_ids))

    await notifier.broadcast("chain-deleted", {"chain_id": chain_id})
