"""
retention.py — Quiz attempt retention tiers.

  anonymous (no owner)        → completed_at + 24 hours
  temporary owner (unpaid)    → completed_at + 90 days
  permanent owner             → None (kept forever)

Temporary users themselves also expire TEMPORARY_RETENTION after their
last refresh.
"""
from datetime import datetime, timedelta
from typing import Optional

from bizmodel.models.user import UserORM

ANONYMOUS_RETENTION = timedelta(hours=24)
TEMPORARY_RETENTION = timedelta(days=90)


def expiration_for(owner: Optional[UserORM], completed_at: datetime) -> Optional[datetime]:
    if owner is None:
        return completed_at + ANONYMOUS_RETENTION
    if owner.is_temporary:
        return completed_at + TEMPORARY_RETENTION
    return None


def storage_type_for(owner: Optional[UserORM]) -> str:
    """Value of the `storageType` response field."""
    if owner is None:
        return "anonymous-db"
    return "temporary" if owner.is_temporary else "permanent"
