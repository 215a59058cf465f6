from datetime import datetime, timedelta
import asyncio

import pytest

from campus_platform.auth.otp_store import OTPStore
from campus_platform.core.errors import ValidationError

EMAIL = "ada@campus.test"


@pytest.fixture
def store(db):
    return OTPStore(db, ttl_seconds=300, max_attempts=3)


class TestOTPStore:

    async def test_code_is_single_use(self, store):
        code = await store.issue("signup", EMAIL)
        assert len(code) == 6 and code.isdigit()

        assert await store.verify("signup", " ADA@campus.test ", code) is True
        with pytest.raises(ValidationError):
            await store.verify("signup", EMAIL, code)

    async def test_codes_are_scoped_by_purpose(self, store):
        code = await store.issue("signup", EMAIL)
        with pytest.raises(ValidationError):
            await store.verify("reset", EMAIL, code)

    async def test_reissue_replaces_code(self, store, db):
        await store.issue("login", EMAIL)
        await store.issue("login", EMAIL)
        assert await db.otp_codes.count_documents({}) == 1

    async def test_wrong_code_counts_down(self, store):
        code = await store.issue("login", EMAIL)
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(ValidationError) as exc:
            await store.verify("login", EMAIL, wrong)
        assert exc.value.extra == {"attempts_left": 2}

        with pytest.raises(ValidationError):
            await store.verify("login", EMAIL, wrong)
        with pytest.raises(ValidationError) as exc:
            await store.verify("login", EMAIL, wrong)
        assert exc.value.extra == {"attempts_left": 0}

        with pytest.raises(ValidationError) as exc:
            await store.verify("login", EMAIL, code)
        assert "request a new" in exc.value.message

    async def test_parallel_guesses_share_the_budget(self, store):
        code = await store.issue("login", EMAIL)
        wrong = [f"{n:06d}" for n in range(12) if f"{n:06d}" != code][:10]

        results = await asyncio.gather(
            *(store.verify("login", EMAIL, guess) for guess in wrong),
            return_exceptions=True
        )

        assert all(isinstance(r, ValidationError) for r in results)
        invalid = [r for r in results if r.message == "Invalid OTP"]
        assert sorted(r.extra["attempts_left"] for r in invalid) == [1, 2]
        with pytest.raises(ValidationError) as exc:
            await store.verify("login", EMAIL, code)
        assert "request a new" in exc.value.message

    async def test_expired_code(self, store, db):
        issued_at = datetime(2026, 5, 1, 12, 0)
        code = await store.issue("login", EMAIL, now=issued_at)

        with pytest.raises(ValidationError) as exc:
            await store.verify("login", EMAIL, code, now=issued_at + timedelta(seconds=301))
        assert "expired" in exc.value.message
        assert await db.otp_codes.count_documents({}) == 0

    async def test_verify_then_redeem(self, store):
        code = await store.issue("reset", EMAIL)

        with pytest.raises(ValidationError):
            await store.consume_verified("reset", EMAIL)

        await store.verify("reset", EMAIL, code, consume=False)
        assert await store.consume_verified("reset", EMAIL) is True
        with pytest.raises(ValidationError):
            await store.consume_verified("reset", EMAIL)

    def test_unknown_purpose(self):
        with pytest.raises(ValueError):
            OTPStore.key("invite", EMAIL)
