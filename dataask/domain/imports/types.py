from enum import Enum


class ColumnType(str, Enum):
    """Semantic column types the importer understands."""

    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"

    @property
    def sql_type(self) -> str:
        """Declared type used in CREATE TABLE (SQLite affinity follows from it)."""
        return _SQL_TYPES[self]


_SQL_TYPES = {
    ColumnType.TEXT: "TEXT",
    ColumnType.INTEGER: "INTEGER",
    ColumnType.REAL: "REAL",
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.DATE: "DATE",
}
