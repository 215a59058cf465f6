from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user, require_capability
from campus_platform.forum import forum_service as service
from campus_platform.forum.forum_schemas import PostCategory, PostCreate, PostUpdate, CommentCreate

router = APIRouter(prefix="/api/forum", tags=["Forum"])


@router.post("/posts", status_code=201)
async def create_post(
    data: PostCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("forum_post", "create"))
):
    post = await service.create_post(db, user, data.model_dump(mode="json"))
    return {"success": True, "message": "Post created successfully", "post": post}


@router.get("/posts")
async def list_posts(
    category: Optional[PostCategory] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    result = await service.list_posts(db, user, category.value if category else None, search, page, limit)
    return {"success": True, **result}


@router.get("/posts/mine")
async def my_posts(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    posts = await service.list_my_posts(db, user)
    return {"success": True, "count": len(posts), "posts": posts}


@router.get("/posts/{post_id}")
async def get_post(
    post_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return {"success": True, "post": await service.get_post(db, user, post_id)}


@router.patch("/posts/{post_id}")
async def update_post(
    post_id: str,
    data: PostUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    post = await service.update_post(db, user, post_id, data.model_dump(mode="json", exclude_none=True))
    return {"success": True, "message": "Post updated", "post": post}


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await service.delete_post(db, user, post_id)
    return {"success": True, "message": "Post deleted"}


@router.post("/posts/{post_id}/comments", status_code=201)
async def add_comment(
    post_id: str,
    data: CommentCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("forum_post", "comment"))
):
    comment = await service.add_comment(db, user, post_id, data.content)
    return {"success": True, "message": "Comment added", "comment": comment}


@router.post("/posts/{post_id}/like")
async def toggle_like(
    post_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("forum_post", "like"))
):
    return {"success": True, **(await service.toggle_like(db, user, post_id))}
