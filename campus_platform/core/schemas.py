from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator


class RequestModel(BaseModel):
    """
    Base for request bodies that end up in MongoDB: enums are stored as their
    values and datetimes as naive UTC, matching datetime.utcnow() everywhere else.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    @field_validator("*", mode="after")
    @classmethod
    def naive_utc(cls, v):
        if isinstance(v, datetime) and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v
