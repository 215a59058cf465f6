from datetime import datetime
from typing import List, Optional
import re

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from campus_platform.ai.moderation import ModerationResult, moderate_post, moderate_comment
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import NotFoundError, ValidationError
from campus_platform.core.permissions import UserContext
from campus_platform.realtime.manager import notifier, user_room

ACTIVE_POST = {"is_deleted": {"$ne": True}}


def _reject(result: ModerationResult, kind: str):
    raise ValidationError(
        f"Your {kind} was not published because it may violate the community guidelines",
        reason=result.reason,
        suggestion=result.suggestion,
    )


async def _get_post(db: AsyncIOMotorDatabase, post_id: str) -> dict:
    post = await db.forum_posts.find_one({**ACTIVE_POST, "post_id": post_id})
    if not post:
        raise NotFoundError("Post not found")
    return post


def _present(post: dict, viewer: UserContext = None) -> dict:
    post = serialize_doc(post)
    post["like_count"] = len(post.get("likes", []))
    post["comment_count"] = len(post.get("comments", []))
    if viewer is not None:
        post["liked_by_me"] = viewer.user_id in post.get("likes", [])
    return post


# ==================== POSTS ====================

async def create_post(db: AsyncIOMotorDatabase, user: UserContext, data: dict) -> dict:
    verdict = await moderate_post(data["title"], data["description"])
    if not verdict.is_allowed:
        _reject(verdict, "post")

    now = datetime.utcnow()
    post = {
        "post_id": generate_id("PST"),
        "author_id": user.user_id,
        "author_name": user.full_name,
        "author_role": user.role,
        "title": data["title"].strip(),
        "description": data["description"].strip(),
        "category": data.get("category", "general"),
        "tags": [t.strip().lower() for t in data.get("tags", []) if t.strip()],
        "likes": [],
        "comments": [],
        "views": 0,
        "is_deleted": False,
        "created_at": now,
        "updated_at": now,
    }
    await db.forum_posts.insert_one(post)
    return _present(post, user)


async def list_posts(
    db: AsyncIOMotorDatabase,
    viewer: UserContext,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20
) -> dict:
    query = dict(ACTIVE_POST)
    if category:
        query["category"] = category
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}, {"tags": pattern}]

    total = await db.forum_posts.count_documents(query)
    cursor = db.forum_posts.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    posts = await cursor.to_list(length=limit)

    return {
        "posts": [_present(p, viewer) for p in posts],
        "pagination": {"page": page, "limit": limit, "total": total},
    }


async def get_post(db: AsyncIOMotorDatabase, viewer: UserContext, post_id: str) -> dict:
    post = await db.forum_posts.find_one_and_update(
        {**ACTIVE_POST, "post_id": post_id},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER
    )
    if not post:
        raise NotFoundError("Post not found")
    return _present(post, viewer)


async def update_post(db: AsyncIOMotorDatabase, user: UserContext, post_id: str, data: dict) -> dict:
    post = await _get_post(db, post_id)
    user.require("forum_post", "edit", is_owner=post["author_id"] == user.user_id)

    changes = {k: v for k, v in data.items() if v is not None}
    if not changes:
        raise ValidationError("No fields to update")

    verdict = await moderate_post(changes.get("title", post["title"]), changes.get("description", post["description"]))
    if not verdict.is_allowed:
        _reject(verdict, "post")

    changes["updated_at"] = datetime.utcnow()
    await db.forum_posts.update_one({"post_id": post_id}, {"$set": changes})
    post.update(changes)
    return _present(post, user)


async def delete_post(db: AsyncIOMotorDatabase, user: UserContext, post_id: str):
    post = await _get_post(db, post_id)
    is_owner = post["author_id"] == user.user_id
    if not user.can("forum_post", "moderate_delete"):
        user.require("forum_post", "delete", is_owner=is_owner)

    await db.forum_posts.update_one(
        {"post_id": post_id},
        {"$set": {"is_deleted": True, "deleted_by": user.user_id, "updated_at": datetime.utcnow()}}
    )


# ==================== INTERACTIONS ====================

async def add_comment(db: AsyncIOMotorDatabase, user: UserContext, post_id: str, content: str) -> dict:
    post = await _get_post(db, post_id)

    verdict = await moderate_comment(content)
    if not verdict.is_allowed:
        _reject(verdict, "comment")

    comment = {
        "comment_id": generate_id("CMT"),
        "user_id": user.user_id,
        "user_name": user.full_name,
        "content": content.strip(),
        "created_at": datetime.utcnow(),
    }
    await db.forum_posts.update_one({"post_id": post_id}, {"$push": {"comments": comment}})

    if post["author_id"] != user.user_id:
        await notifier.emit(user_room(post["author_id"]), "new-comment", {
            "post_id": post_id, "comment": comment,
        })
    return comment


async def toggle_like(db: AsyncIOMotorDatabase, user: UserContext, post_id: str) -> dict:
    post = await _get_post(db, post_id)

    if user.user_id in post.get("likes", []):
        await db.forum_posts.update_one({"post_id": post_id}, {"$pull": {"likes": user.user_id}})
        liked = False
    else:
        await db.forum_posts.update_one({"post_id": post_id}, {"$addToSet": {"likes": user.user_id}})
        liked = True

    refreshed = await _get_post(db, post_id)
    return {"liked": liked, "like_count": len(refreshed.get("likes", []))}


async def list_my_posts(db: AsyncIOMotorDatabase, user: UserContext) -> List[dict]:
    posts = await db.forum_posts.find({**ACTIVE_POST, "author_id": user.user_id}).sort("created_at", -1).to_list(length=None)
    return [_present(p, user) for p in serialize_many(posts)]
