"""Durable projection of an in-flight batch."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from atelier.utils.time import utc_now

from .base import DomainModel
from .generation import Batch, JobGroup
from .types import AssetId, BatchId, GroupKey, SessionId


class RecoveryRecord(DomainModel):
    """A batch recorded as potentially interrupted for one backend environment."""

    batch: Batch
    environment: str
    session_id: SessionId
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def batch_id(self) -> BatchId:
        return self.batch.batch_id

    @property
    def asset(self) -> AssetId:
        return self.batch.asset

    @property
    def is_empty(self) -> bool:
        return self.batch.is_empty

    def without(self, keys: frozenset[GroupKey]) -> RecoveryRecord:
        return self.model_copy(update={"batch": self.batch.without(keys)})

    def removed_groups(self, keys: frozenset[GroupKey]) -> tuple[JobGroup, ...]:
        return tuple(group for group in self.batch.groups if group.key in keys)


__all__ = ["RecoveryRecord"]
