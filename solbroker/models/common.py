"""Shared helpers and base model used across solbroker models."""

from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Base model ---


class BrokerBase(BaseModel):
    """Base model with common configuration for solbroker request models.

    Unknown keys are kept: compiler settings evolve faster than this
    service, and anything we do not understand is forwarded untouched.
    """

    model_config = {
        "populate_by_name": True,
        "extra": "allow",
        "protected_namespaces": (),
    }
