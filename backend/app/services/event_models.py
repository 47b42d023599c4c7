"""
backend/app/services/event_models.py

Purpose:
    Domain event contracts for in-process reactive workflows. ID-first
    payloads decouple the ingestion path from settlement.

Dependencies:
    - pydantic
    - app.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.utils import utcnow

EventType = Literal["event.finalized"]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class EventFinalizedEvent(BaseEvent):
    event_type: Literal["event.finalized"] = "event.finalized"
    sport_event_id: str
