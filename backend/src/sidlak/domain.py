from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

MedalType = Literal["gold", "silver", "bronze"]

MEDAL_TYPES: tuple[MedalType, ...] = ("gold", "silver", "bronze")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def _required_text(v: object, field: str) -> str:
    if not isinstance(v, str):
        raise ValueError(f"{field} must be a string")
    s = v.strip()
    if not s:
        raise ValueError(f"{field} must not be blank")
    return s


def _optional_text(v: object) -> str | None:
    if v is None:
        return None
    if not isinstance(v, str):
        raise ValueError("value must be a string")
    return v.strip() or None


class Department(BaseModel):
    id: str
    name: str
    abbreviation: str | None = None
    image_url: str | None = None


class Event(BaseModel):
    id: str
    name: str
    category: str | None = None
    icon: str | None = None


class MedalAward(BaseModel):
    event_id: str
    department_id: str
    medal_type: MedalType


class ResultRecord(MedalAward):
    id: str
    created_at: datetime


class DepartmentStanding(BaseModel):
    department_id: str
    name: str
    abbreviation: str | None = None
    image_url: str | None = None
    gold_count: int = 0
    silver_count: int = 0
    bronze_count: int = 0
    total_points: float = 0.0

    @property
    def total_medals(self) -> int:
        return self.gold_count + self.silver_count + self.bronze_count


class WinnerInfo(BaseModel):
    department_id: str
    name: str
    abbreviation: str
    image_url: str | None = None


class CreateDepartmentRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    abbreviation: str | None = Field(default=None, max_length=20)
    image_url: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str:
        return _required_text(v, "name")

    @field_validator("abbreviation", "image_url", mode="before")
    @classmethod
    def _strip_optional_text(cls, v: object) -> str | None:
        return _optional_text(v)


class UpdateDepartmentRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    abbreviation: str | None = Field(default=None, max_length=20)
    image_url: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str | None:
        if v is None:
            return None
        return _required_text(v, "name")

    @field_validator("abbreviation", "image_url", mode="before")
    @classmethod
    def _strip_optional_text(cls, v: object) -> str | None:
        return _optional_text(v)


class CreateEventRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category: str | None = Field(default=None, max_length=50)
    icon: str | None = Field(default=None, max_length=16)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str:
        return _required_text(v, "name")

    @field_validator("category", "icon", mode="before")
    @classmethod
    def _strip_optional_text(cls, v: object) -> str | None:
        return _optional_text(v)


class UpdateEventRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    category: str | None = Field(default=None, max_length=50)
    icon: str | None = Field(default=None, max_length=16)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str | None:
        if v is None:
            return None
        return _required_text(v, "name")

    @field_validator("category", "icon", mode="before")
    @classmethod
    def _strip_optional_text(cls, v: object) -> str | None:
        return _optional_text(v)


class RecordResultRequest(BaseModel):
    event_id: str = Field(min_length=1)
    department_id: str = Field(min_length=1)
    medal_type: MedalType


class StandingRow(BaseModel):
    rank: int
    department_id: str
    name: str
    abbreviation: str | None = None
    image_url: str | None = None
    gold_count: int
    silver_count: int
    bronze_count: int
    total_medals: int
    total_points: float
    display_points: str


class StandingsResponse(BaseModel):
    standings: list[StandingRow]
    podium: list[StandingRow]


class EventResultRow(BaseModel):
    event_id: str
    event_name: str
    category: str | None = None
    icon: str | None = None
    medals: dict[MedalType, WinnerInfo]


class EventResultsResponse(BaseModel):
    events: list[EventResultRow]


class StoreBackend(BaseModel):
    kind: Literal["inmemory", "dynamodb"]
