"""Pydantic models for order store records."""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class Order(BaseModel):
    """
    One fulfillment order as stored by the allocation webhook.

    Timestamps are kept as received (ISO string, datetime or epoch) and
    parsed lazily by the SLA calculator, so a malformed value excludes the
    order from metrics instead of failing the whole fetch.
    """

    id: Optional[str] = None
    order_number: Optional[Union[str, int]] = None
    allocated_at: Optional[Any] = None
    shipped_at: Optional[Any] = Field(default=None, alias="shippedAt")
    status: Optional[str] = None
    ready_to_ship: Optional[bool] = None

    class Config:
        extra = "allow"
        populate_by_name = True


class PackErrorEvent(BaseModel):
    """Packing error occurrence. Only the received timestamp is consumed."""

    id: Optional[str] = None
    received_at: datetime = Field(alias="receivedAt")

    class Config:
        extra = "allow"
        populate_by_name = True
