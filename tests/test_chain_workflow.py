from datetime import datetime, timedelta

import pytest

from campus_platform.core.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from campus_platform.milestones import chain_service, milestone_service
from tests.factories import START, add_milestone, new_chain


class TestChainLifecycle:

    async def test_creator_is_first_editor(self, db, make_user):
        admin = await make_user("admin", full_name="Ada Admin")
        chain = await new_chain(db, admin)

        assert chain["status"] == "editing"
        assert chain["version"] == 1
        assert [e["user_id"] for e in chain["editors"]] == [admin.user_id]

    async def test_publishing_empty_chain_fails(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)

        with pytest.raises(InvalidStateError) as exc:
            await chain_service.publish_chain(db, admin, chain["chain_id"])

        assert exc.value.message.startswith("Cannot publish empty chain")
        stored = await chain_service.get_chain(db, chain["chain_id"])
        assert stored["status"] == "editing"

    async def test_publish_cascades_to_milestones(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"], "Proposal")
        await add_milestone(db, admin, chain["chain_id"], "Prototype")

        published = await chain_service.publish_chain(db, admin, chain["chain_id"])

        assert published["status"] == "published"
        assert published["published_by"] == admin.user_id
        assert published["total_milestones"] == 2
        statuses = await db.milestones.distinct("status", {"chain_id": chain["chain_id"]})
        assert statuses == ["published"]
        assert await db.audit_logs.count_documents({"action": "publish_chain"}) == 1

    async def test_publishing_twice_conflicts(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"])
        await chain_service.publish_chain(db, admin, chain["chain_id"])

        with pytest.raises(ConflictError):
            await chain_service.publish_chain(db, admin, chain["chain_id"])

    async def test_concurrent_edit_rolls_publish_back(self, db, make_user, monkeypatch):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"])

        real_get_chain = chain_service.get_chain

        async def stale_get_chain(database, chain_id):
            doc = await real_get_chain(database, chain_id)
            # Someone else edits the chain right after this read
            await database.milestone_chains.update_one({"chain_id": chain_id}, {"$inc": {"version": 1}})
            return doc

        monkeypatch.setattr(chain_service, "get_chain", stale_get_chain)
        with pytest.raises(ConflictError):
            await chain_service.publish_chain(db, admin, chain["chain_id"])
        monkeypatch.setattr(chain_service, "get_chain", real_get_chain)

        stored = await chain_service.get_chain(db, chain["chain_id"])
        assert stored["status"] == "editing"
        assert await db.milestones.distinct("status", {"chain_id": chain["chain_id"]}) == ["draft"]

    async def test_overlapping_publishes_leave_chain_published(self, db, make_user, monkeypatch):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"], "Proposal")
        await add_milestone(db, admin, chain["chain_id"], "Prototype")

        real_set_status = chain_service.set_milestone_status
        second_attempt = {}

        async def flip_with_second_publish(*args, **kwargs):
            if not second_attempt:
                try:
                    await chain_service.publish_chain(db, admin, chain["chain_id"])
                except ConflictError as exc:
                    second_attempt["error"] = exc
            await real_set_status(*args, **kwargs)

        monkeypatch.setattr(chain_service, "set_milestone_status", flip_with_second_publish)
        published = await chain_service.publish_chain(db, admin, chain["chain_id"])

        assert isinstance(second_attempt["error"], ConflictError)
        assert published["status"] == "published"
        assert await db.milestones.distinct("status", {"chain_id": chain["chain_id"]}) == ["published"]
        assert await db.audit_logs.count_documents({"action": "publish_chain"}) == 1

    async def test_milestone_added_during_publish_rolls_back(self, db, make_user, monkeypatch):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"], "Proposal")

        real_set_status = chain_service.set_milestone_status
        added = []

        async def flip_then_edit(*args, **kwargs):
            await real_set_status(*args, **kwargs)
            if not added:
                added.append(await add_milestone(db, admin, chain["chain_id"], "Late addition"))

        monkeypatch.setattr(chain_service, "set_milestone_status", flip_then_edit)
        with pytest.raises(ConflictError):
            await chain_service.publish_chain(db, admin, chain["chain_id"])

        stored = await chain_service.get_chain(db, chain["chain_id"])
        assert stored["status"] == "editing"
        assert stored["total_milestones"] == 2
        assert await db.milestones.distinct("status", {"chain_id": chain["chain_id"]}) == ["draft"]

    async def test_archive(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        archived = await chain_service.archive_chain(db, admin, chain["chain_id"])
        assert archived["status"] == "archived"

        with pytest.raises(InvalidStateError):
            await add_milestone(db, admin, chain["chain_id"])


class TestRepublishRule:

    async def test_new_milestone_reverts_published_chain(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"], "Proposal")
        await chain_service.publish_chain(db, admin, chain["chain_id"])

        result = await add_milestone(db, admin, chain["chain_id"], "Report")

        assert result["requires_republish"] is True
        assert result["chain_status"] == "editing"
        stored = await chain_service.get_chain(db, chain["chain_id"])
        assert stored["status"] == "editing"
        assert stored["total_milestones"] == 2

    async def test_edit_on_editing_chain_needs_no_republish(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        created = await add_milestone(db, admin, chain["chain_id"])

        result = await milestone_service.update_milestone(
            db, admin, created["milestone"]["milestone_id"], {"name": "Project proposal"}
        )
        assert result["requires_republish"] is False
        assert result["milestone"]["name"] == "Project proposal"

    async def test_published_start_date_cannot_move_before_tomorrow(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        created = await add_milestone(db, admin, chain["chain_id"])
        await chain_service.publish_chain(db, admin, chain["chain_id"])
        milestone_id = created["milestone"]["milestone_id"]

        now = datetime.utcnow().replace(microsecond=0)
        with pytest.raises(InvalidStateError) as exc:
            await milestone_service.update_milestone(
                db, admin, milestone_id, {"start_date": now, "end_date": now + timedelta(days=30)}
            )
        assert "earliest_start" in exc.value.extra
        assert (await chain_service.get_chain(db, chain["chain_id"]))["status"] == "published"

        later = now + timedelta(days=3)
        result = await milestone_service.update_milestone(
            db, admin, milestone_id, {"start_date": later, "end_date": later + timedelta(days=30)}
        )
        assert result["requires_republish"] is True

    async def test_order_is_unique_per_chain(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"], "One", order=1)

        with pytest.raises(ConflictError):
            await add_milestone(db, admin, chain["chain_id"], "Also one", order=1)

        second = await add_milestone(db, admin, chain["chain_id"], "Two")
        assert second["milestone"]["order"] == 2

    async def test_editor_list_tracks_collaborators(self, db, make_user):
        admin = await make_user("admin")
        other = await make_user("super_admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, other, chain["chain_id"])

        stored = await chain_service.get_chain(db, chain["chain_id"])
        assert {e["user_id"] for e in stored["editors"]} == {admin.user_id, other.user_id}


class TestDeletion:

    async def test_chain_with_progress_cannot_be_deleted(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        created = await add_milestone(db, admin, chain["chain_id"])
        await db.student_milestones.insert_one({
            "record_id": "SMP_1", "student_id": "USR_1",
            "milestone_id": created["milestone"]["milestone_id"], "status": "in-progress",
        })

        with pytest.raises(ConflictError):
            await chain_service.delete_chain(db, admin, chain["chain_id"])
        assert await db.milestones.count_documents({"chain_id": chain["chain_id"]}) == 1

    async def test_delete_cascades(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        await add_milestone(db, admin, chain["chain_id"], "One")
        await add_milestone(db, admin, chain["chain_id"], "Two")

        await chain_service.delete_chain(db, admin, chain["chain_id"])

        assert await db.milestones.count_documents({"chain_id": chain["chain_id"]}) == 0
        with pytest.raises(NotFoundError):
            await chain_service.get_chain(db, chain["chain_id"])

    async def test_milestone_of_published_chain_cannot_be_deleted(self, db, make_user):
        admin = await make_user("admin")
        chain = await new_chain(db, admin)
        created = await add_milestone(db, admin, chain["chain_id"])
        await chain_service.publish_chain(db, admin, chain["chain_id"])

        with pytest.raises(InvalidStateError):
            await milestone_service.delete_milestone(db, admin, created["milestone"]["milestone_id"])


class TestReadAccess:

    async def test_students_only_see_published_chains(self, db, make_user):
        admin = await make_user("admin")
        student = await make_user("student")
        draft = await new_chain(db, admin, "Draft chain")
        live = await new_chain(db, admin, "Live chain")
        await add_milestone(db, admin, live["chain_id"])
        await chain_service.publish_chain(db, admin, live["chain_id"])

        visible = await chain_service.list_chains(db, student)
        assert [c["chain_id"] for c in visible] == [live["chain_id"]]

        result = await milestone_service.get_milestones_by_chain(db, student, draft["chain_id"])
        assert result["milestones"] == []

    async def test_student_cannot_open_draft_milestone(self, db, make_user):
        admin = await make_user("admin")
        student = await make_user("student")
        chain = await new_chain(db, admin)
        created = await add_milestone(db, admin, chain["chain_id"])

        with pytest.raises(ForbiddenError):
            await milestone_service.get_milestone(db, student, created["milestone"]["milestone_id"])

    async def test_student_sees_quiz_without_answers(self, db, make_user):
        admin = await make_user("admin")
        student = await make_user("student")
        chain = await new_chain(db, admin)
        created = await add_milestone(
            db, admin, chain["chain_id"], "Quiz 1", type="quiz", duration=15,
            questions=[{"question": "Capital of France?", "options": ["Paris", "Rome"], "correct_answer": "Paris"}],
        )
        await chain_service.publish_chain(db, admin, chain["chain_id"])

        view = await milestone_service.get_milestone(
            db, student, created["milestone"]["milestone_id"], now=START + timedelta(days=1)
        )
        assert view["is_locked"] is False
        assert view["questions"][0]["question_id"].startswith("QST_")
        assert "correct_answer" not in view["questions"][0]
