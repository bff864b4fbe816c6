from datetime import datetime
from typing import Generic, List, TypeVar
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from exam_proctor.utils.timeutils import ensure_utc

T = TypeVar("T")


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value):
        # Naive values (client input, SQLite rows) are UTC
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class Page(CamelModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int


class StatusResponse(CamelModel):
    status: str = "SUCCESS"
