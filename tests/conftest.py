from datetime import datetime, timedelta
import itertools

import pytest
from mongomock_motor import AsyncMongoMockClient

from campus_platform.core.database import generate_id
from campus_platform.core.permissions import UserContext

_clock = itertools.count()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["campus_platform_test"]


@pytest.fixture
def make_user(db):
    """Insert a user and return its UserContext"""
    async def factory(role="student", full_name=None, **fields):
        user_id = generate_id("USR")
        doc = {
            "user_id": user_id,
            "full_name": full_name or f"{role.title()} {user_id[-4:]}",
            "email": f"{user_id.lower()}@campus.test",
            "role": role,
            "is_active": True,
            "approval_status": "approved",
            "created_at": datetime(2026, 1, 1) + timedelta(seconds=next(_clock)),
        }
        doc.update(fields)
        await db.users.insert_one(dict(doc))
        return UserContext(doc)
    return factory


@pytest.fixture
def make_team(db):
    async def factory(name=None, members=(), **fields):
        team_id = generate_id("TEAM")
        doc = {
            "team_id": team_id,
            "team_name": name or f"Team {team_id[-4:]}",
            "team_code": team_id[-6:],
            "members": [{"user_id": m.user_id, "full_name": m.full_name, "role": "member"} for m in members],
            "is_deleted": False,
            "created_at": datetime(2026, 1, 1) + timedelta(seconds=next(_clock)),
        }
        doc.update(fields)
        await db.teams.insert_one(dict(doc))
        return doc
    return factory
