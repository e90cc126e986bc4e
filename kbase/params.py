"""
Request parameter objects for item operations.

These are the typed inputs a protocol adapter hands to the synchronizer.
They check shape only (types, enums, ranges); domain validation such as
title length or calendar dates happens in the synchronizer.
"""

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Priority = Literal["high", "medium", "low"]


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., min_length=1, description="Item type name")

    @field_validator("type")
    @classmethod
    def type_is_trimmed(cls, v: str) -> str:
        return v.strip()


class CreateItemParams(_Params):
    """Fields for a new item. ``id`` is only honored for sessions."""

    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    related: list[str] = Field(default_factory=list)
    related_tasks: list[str] = Field(default_factory=list)
    related_documents: list[str] = Field(default_factory=list)

    # Date-keyed types
    id: Optional[str] = Field(None, description="Explicit session id")
    datetime: Optional[dt.datetime] = Field(None, description="Session start instant")
    date: Optional[str] = Field(None, description="Daily summary date (YYYY-MM-DD)")


class UpdateItemParams(_Params):
    """
    A partial update. Only fields the caller set are applied; setting an
    optional field to None clears it.
    """

    id: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    tags: Optional[list[str]] = None
    related: Optional[list[str]] = None
    related_tasks: Optional[list[str]] = None
    related_documents: Optional[list[str]] = None

    def supplied(self) -> set[str]:
        """Names of the fields the caller set, excluding the key."""
        return self.model_fields_set - {"type", "id"}


class ListItemsParams(_Params):
    """Filters for listing one type from the index."""

    include_closed: bool = False
    statuses: Optional[list[str]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    limit: Optional[int] = Field(None, gt=0)
