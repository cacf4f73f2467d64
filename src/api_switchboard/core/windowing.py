from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from api_switchboard.core.utils import coerce_datetime, parse_datetime


def get_field(item: Any, field: str) -> Any:
    """Read a field from an item, following dotted paths into nested objects."""
    if isinstance(item, dict) and field in item:
        return item[field]
    value = item
    for part in field.split('.'):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


class DateWindow(BaseModel):
    # Inclusive [date_from, date_to] filter on one item field; either bound optional
    field: str                                  # Item field holding the date, e.g. "created_at"
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator('field')
    @classmethod
    def validate_field(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("date field must not be empty")
        return v.strip()

    @field_validator('date_from', 'date_to', mode='before')
    @classmethod
    def parse_bound(cls, v: Any) -> Optional[datetime]:
        if v is None or v == "":
            return None
        return parse_datetime(v)

    @model_validator(mode='after')
    def check_bounds(self) -> 'DateWindow':
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def is_bounded(self) -> bool:
        return self.date_from is not None or self.date_to is not None

    def item_date(self, item: Any) -> Optional[datetime]:
        return coerce_datetime(get_field(item, self.field))

    def contains(self, item: Any) -> bool:
        """Items without a parseable date never match."""
        when = self.item_date(item)
        if when is None:
            return False
        if self.date_from and when < self.date_from:
            return False
        if self.date_to and when > self.date_to:
            return False
        return True

    def filter(self, items: List[Any]) -> List[Any]:
        if not self.is_bounded:
            return list(items)
        return [item for item in items if self.contains(item)]

    def any_before(self, items: List[Any]) -> bool:
        """Whether any item predates the lower bound."""
        if self.date_from is None:
            return False
        for item in items:
            when = self.item_date(item)
            if when is not None and when < self.date_from:
                return True
        return False
