"""Schema snapshot of a database, handed to rules that need existing state."""

from typing import Optional
from pydantic import BaseModel, Field


class ColumnCatalog(BaseModel):
    name: str
    type: str = ""
    nullable: bool = True
    position: int = 0


class TableCatalog(BaseModel):
    name: str
    columns: list[ColumnCatalog] = Field(default_factory=list)

    def has_column(self, name: str) -> bool:
        return any(column.name.lower() == name.lower() for column in self.columns)


class DatabaseCatalog(BaseModel):
    """Tables of one database as stored by the last schema sync."""
    name: str
    engine: str = ""
    tables: list[TableCatalog] = Field(default_factory=list)

    def find_table(self, name: str) -> Optional[TableCatalog]:
        for table in self.tables:
            if table.name.lower() == name.lower():
                return table
        return None
