"""Shared type aliases for the domain layer."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, NewType
from uuid import UUID

AssetId = NewType("AssetId", str)
JobId = NewType("JobId", UUID)
BatchId = NewType("BatchId", UUID)
SessionId = NewType("SessionId", UUID)
ProgressId = NewType("ProgressId", int)
ChannelTag = str
GroupKey = tuple[tuple[str, str], ...]
JsonMapping = Mapping[str, Any]

__all__ = [
    "AssetId",
    "BatchId",
    "ChannelTag",
    "GroupKey",
    "JobId",
    "JsonMapping",
    "ProgressId",
    "SessionId",
]
