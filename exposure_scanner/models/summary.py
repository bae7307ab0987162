from typing import List
from pydantic import BaseModel, Field


class RankedTable(BaseModel):
    """A table in the exposure ranking, with its most exposed columns"""
    name: str
    columns: List[str] = Field(default_factory=list)


class ExposureSummary(BaseModel):
    """
        Cross-table ranking of the most exposed tables, in the order the
        prioritization oracle returned them.
    """
    risk: str
    tables: List[RankedTable] = Field(default_factory=list)
