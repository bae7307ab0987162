from enum import Enum
from typing import Optional
from pydantic import BaseModel


class CountStatus(str, Enum):
    EXACT = "exact"
    AT_LEAST = "at_least"   # upstream cap reached and more records remain
    ERROR = "error"         # service answered with an error-status envelope
    UNKNOWN = "unknown"     # transport or parse failure


class RecordCount(BaseModel):
    """
        Number of records found for a table.

        An error-status envelope and an empty success envelope both count as
        zero, but only counts from success envelopes can confirm data.
    """
    status: CountStatus
    value: Optional[int] = None

    @classmethod
    def exact(cls, value: int) -> "RecordCount":
        return cls(status=CountStatus.EXACT, value=value)

    @classmethod
    def at_least(cls, value: int) -> "RecordCount":
        return cls(status=CountStatus.AT_LEAST, value=value)

    @classmethod
    def error(cls) -> "RecordCount":
        return cls(status=CountStatus.ERROR, value=0)

    @classmethod
    def unknown(cls) -> "RecordCount":
        return cls(status=CountStatus.UNKNOWN)

    @classmethod
    def from_hits(cls, hit_count: int, at_end: Optional[bool], cap: int) -> "RecordCount":
        """Capped counts are only reported as "at least" when upstream says there is more"""
        if hit_count >= cap and at_end is False:
            return cls.at_least(cap)
        return cls.exact(hit_count)

    @property
    def is_exact(self) -> bool:
        return self.status == CountStatus.EXACT

    @property
    def has_data(self) -> bool:
        return self.status in (CountStatus.EXACT, CountStatus.AT_LEAST) and bool(self.value)

    @property
    def display(self) -> str:
        if self.status == CountStatus.UNKNOWN:
            return "?"
        if self.status == CountStatus.AT_LEAST:
            return f"{self.value}+"
        return str(self.value or 0)
