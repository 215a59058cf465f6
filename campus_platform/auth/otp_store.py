from datetime import datetime, timedelta
import hashlib
import secrets

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from campus_platform import config
from campus_platform.core.errors import ValidationError

PURPOSES = ("signup", "login", "reset")


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


class OTPStore:
    """
    One-time codes keyed by purpose and email, kept in MongoDB.

    A TTL index removes expired rows; expiry is still checked on read because
    the TTL monitor only runs once a minute. A record is deleted after a
    successful verification or once the attempt budget is spent.
    """
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        ttl_seconds: int = config.OTP_TTL_SECONDS,
        max_attempts: int = config.OTP_MAX_ATTEMPTS
    ):
        self.collection = db.otp_codes
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts

    @staticmethod
    def key(purpose: str, email: str) -> str:
        if purpose not in PURPOSES:
            raise ValueError(f"Unknown OTP purpose: {purpose}")
        return f"{purpose}:{email.strip().lower()}"

    async def issue(self, purpose: str, email: str, now: datetime = None) -> str:
        """Create (or replace) the code for this key and return it"""
        now = now or datetime.utcnow()
        code = f"{secrets.randbelow(10 ** 6):06d}"

        await self.collection.replace_one(
            {"key": self.key(purpose, email)},
            {
                "key": self.key(purpose, email),
                "purpose": purpose,
                "email": email.strip().lower(),
                "code_hash": hash_code(code),
                "attempts": 0,
                "verified": False,
                "created_at": now,
                "expires_at": now + timedelta(seconds=self.ttl_seconds),
            },
            upsert=True
        )
        return code

    async def _load_live(self, key: str, now: datetime) -> dict:
        record = await self.collection.find_one({"key": key})

        if not record:
            raise ValidationError("OTP not found or expired. Please request a new one.")

        if record["expires_at"] <= now:
            await self.collection.delete_one({"key": key})
            raise ValidationError("OTP has expired. Please request a new one.")

        return record

    async def _reserve_attempt(self, key: str, now: datetime) -> dict:
        """Atomically spend one attempt; concurrent guesses each take their own"""
        record = await self.collection.find_one_and_update(
            {"key": key, "attempts": {"$lt": self.max_attempts}, "expires_at": {"$gt": now}},
            {"$inc": {"attempts": 1}},
            return_document=ReturnDocument.AFTER
        )
        if record:
            return record

        await self._load_live(key, now)
        await self.collection.delete_one({"key": key})
        raise ValidationError("Too many failed attempts. Please request a new OTP.")

    async def verify(self, purpose: str, email: str, code: str, consume: bool = True, now: datetime = None) -> bool:
        """
        Check a code. With consume=False the record is kept and marked verified
        so a follow-up step can redeem it with consume_verified().
        """
        now = now or datetime.utcnow()
        key = self.key(purpose, email)
        record = await self._reserve_attempt(key, now)

        if not secrets.compare_digest(record["code_hash"], hash_code(code.strip())):
            attempts_left = self.max_attempts - record["attempts"]
            if attempts_left <= 0:
                await self.collection.delete_one({"key": key})
                raise ValidationError("Too many failed attempts. Please request a new OTP.", attempts_left=0)
            raise ValidationError("Invalid OTP", attempts_left=attempts_left)

        if consume:
            result = await self.collection.delete_one({"key": key, "code_hash": record["code_hash"]})
            if result.deleted_count == 0:
                raise ValidationError("OTP not found or expired. Please request a new one.")
        else:
            await self.collection.update_one({"key": key}, {"$set": {"verified": True}})
        return True

    async def consume_verified(self, purpose: str, email: str, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        key = self.key(purpose, email)
        record = await self._load_live(key, now)

        if not record.get("verified"):
            raise ValidationError("Please verify the OTP first")

        await self.collection.delete_one({"key": key})
        return True
