from .sqlite_client import FoodMemory, SQLiteClient, MUTABLE_FIELDS

__all__ = ["FoodMemory", "SQLiteClient", "MUTABLE_FIELDS"]
