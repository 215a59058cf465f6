import pytest

from campus_platform.admin import admin_service
from campus_platform.auth import auth_service
from campus_platform.core.auth_utils import decode_access_token
from campus_platform.core.errors import AuthenticationError, ConflictError, ForbiddenError, InvalidStateError

SIGNUP = {
    "full_name": "Grace Hopper",
    "email": "Grace@Campus.test",
    "phone": "9000000001",
    "password": "compilers4ever",
    "role": "student",
}


class TestSignupAndLogin:

    async def test_new_accounts_wait_for_approval(self, db, make_user):
        user = await auth_service.signup(db, dict(SIGNUP))

        assert user["email"] == "grace@campus.test"
        assert user["approval_status"] == "pending"
        assert "password_hash" not in user

        with pytest.raises(ForbiddenError) as exc:
            await auth_service.login(db, "grace@campus.test", SIGNUP["password"])
        assert exc.value.extra == {"approval_status": "pending"}

        admin = await make_user("admin")
        await admin_service.approve_user(db, admin, user["user_id"])

        session = await auth_service.login(db, "9000000001", SIGNUP["password"])
        assert decode_access_token(session["token"])["sub"] == user["user_id"]
        assert session["user"]["last_login"] is not None

    async def test_duplicate_email_or_phone(self, db):
        await auth_service.signup(db, dict(SIGNUP))
        with pytest.raises(ConflictError):
            await auth_service.signup(db, {**SIGNUP, "email": "other@campus.test"})

    async def test_wrong_password(self, db):
        await auth_service.signup(db, dict(SIGNUP))
        with pytest.raises(AuthenticationError):
            await auth_service.login(db, "grace@campus.test", "wrong-password")

    async def test_rejected_account(self, db, make_user):
        user = await auth_service.signup(db, dict(SIGNUP))
        admin = await make_user("admin")
        await admin_service.reject_user(db, admin, user["user_id"], reason="Unknown roll number")

        with pytest.raises(ForbiddenError) as exc:
            await auth_service.login(db, "grace@campus.test", SIGNUP["password"])
        assert "rejected" in exc.value.message

    async def test_password_reset(self, db, make_user):
        user = await auth_service.signup(db, dict(SIGNUP))
        await admin_service.approve_user(db, await make_user("admin"), user["user_id"])

        await auth_service.reset_password(db, "GRACE@campus.test", "new-secret-123")

        assert (await auth_service.login(db, "grace@campus.test", "new-secret-123"))["token"]


class TestAdministration:

    async def test_approval_is_audited(self, db, make_user):
        admin = await make_user("admin")
        pending = await make_user("mentor", approval_status="pending")

        await admin_service.approve_user(db, admin, pending.user_id)

        with pytest.raises(ConflictError):
            await admin_service.approve_user(db, admin, pending.user_id)
        entry = await db.audit_logs.find_one({"action": "approve_user"})
        assert entry["target_id"] == pending.user_id

    async def test_toggle_active(self, db, make_user):
        admin = await make_user("admin")
        student = await make_user("student")

        assert (await admin_service.toggle_active(db, admin, student.user_id))["is_active"] is False
        assert (await admin_service.toggle_active(db, admin, student.user_id))["is_active"] is True

        with pytest.raises(InvalidStateError):
            await admin_service.toggle_active(db, admin, admin.user_id)

        root = await make_user("super_admin")
        with pytest.raises(ForbiddenError):
            await admin_service.toggle_active(db, admin, root.user_id)
