import pytest

from campus_platform.ai.moderation import ModerationResult
from campus_platform.core.errors import ForbiddenError, NotFoundError, ValidationError
from campus_platform.forum import forum_service

POST = {"title": "Study group for DSA", "description": "Meeting in the library on Friday", "tags": [" DSA ", ""]}


@pytest.fixture(autouse=True)
def allow_everything(monkeypatch):
    async def allowed(*args):
        return ModerationResult(is_allowed=True)
    monkeypatch.setattr(forum_service, "moderate_post", allowed)
    monkeypatch.setattr(forum_service, "moderate_comment", allowed)


def block_with(monkeypatch, name, reason):
    async def blocked(*args):
        return ModerationResult(is_allowed=False, reason=reason, suggestion="Please rephrase")
    monkeypatch.setattr(forum_service, name, blocked)


class TestPosts:

    async def test_create_and_read(self, db, make_user):
        author = await make_user("student")
        post = await forum_service.create_post(db, author, dict(POST))

        assert post["tags"] == ["dsa"]
        assert post["like_count"] == 0

        viewed = await forum_service.get_post(db, author, post["post_id"])
        assert viewed["views"] == 1

    async def test_rejected_post_is_not_stored(self, db, make_user, monkeypatch):
        block_with(monkeypatch, "moderate_post", "Threatening language")
        author = await make_user("student")

        with pytest.raises(ValidationError) as exc:
            await forum_service.create_post(db, author, dict(POST))

        assert exc.value.extra == {"reason": "Threatening language", "suggestion": "Please rephrase"}
        assert await db.forum_posts.count_documents({}) == 0

    async def test_only_the_author_edits(self, db, make_user):
        author, other = await make_user("student"), await make_user("student")
        post = await forum_service.create_post(db, author, dict(POST))

        with pytest.raises(ForbiddenError):
            await forum_service.update_post(db, other, post["post_id"], {"title": "Hijacked title"})

        updated = await forum_service.update_post(db, author, post["post_id"], {"title": "Study group moved"})
        assert updated["title"] == "Study group moved"

    async def test_admin_removes_any_post(self, db, make_user):
        author, admin = await make_user("student"), await make_user("admin")
        post = await forum_service.create_post(db, author, dict(POST))

        await forum_service.delete_post(db, admin, post["post_id"])

        with pytest.raises(NotFoundError):
            await forum_service.get_post(db, author, post["post_id"])

    async def test_search(self, db, make_user):
        author = await make_user("student")
        await forum_service.create_post(db, author, dict(POST))
        await forum_service.create_post(db, author, {"title": "Lost ID card", "description": "Near block C"})

        result = await forum_service.list_posts(db, author, search="library")
        assert [p["title"] for p in result["posts"]] == ["Study group for DSA"]
        assert result["pagination"]["total"] == 1


class TestInteractions:

    async def test_like_toggles(self, db, make_user):
        author, reader = await make_user("student"), await make_user("mentor")
        post = await forum_service.create_post(db, author, dict(POST))

        assert await forum_service.toggle_like(db, reader, post["post_id"]) == {"liked": True, "like_count": 1}
        assert await forum_service.toggle_like(db, reader, post["post_id"]) == {"liked": False, "like_count": 0}

    async def test_comments_are_moderated(self, db, make_user, monkeypatch):
        author, reader = await make_user("student"), await make_user("student")
        post = await forum_service.create_post(db, author, dict(POST))

        comment = await forum_service.add_comment(db, reader, post["post_id"], "  Count me in  ")
        assert comment["content"] == "Count me in"

        block_with(monkeypatch, "moderate_comment", "Insulting another member")
        with pytest.raises(ValidationError):
            await forum_service.add_comment(db, reader, post["post_id"], "rude remark")

        stored = await forum_service.get_post(db, author, post["post_id"])
        assert stored["comment_count"] == 1
