from __future__ import annotations

import types
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union, get_args, get_origin

from pydantic import BaseModel


class DBSerializableModel(BaseModel):
    """
    Base Pydantic model for everything the DB managers persist.

    - `serialize_for_db` is the single place that decides the stored shape
      (field serializers on subclasses handle sets and decimals).
    - `db_schema` describes the model for the offline schema generator; it
      never touches a database.
    """

    # Logical collection / table name; subclasses must override
    collection_name: ClassVar[str]

    primary_key: ClassVar[Optional[str]] = "id"

    # Extra unique columns, rendered by the schema generator
    unique_fields: ClassVar[tuple[str, ...]] = ()

    def serialize_for_db(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def db_schema(cls) -> Dict[str, Any]:
        fields: Mapping[str, Any] = cls.model_fields

        properties: Dict[str, Any] = {}
        required: list[str] = []

        for name, field in fields.items():
            annotation, nullable = cls._unwrap_optional(field.annotation)
            properties[name] = {
                "type": cls._map_type(annotation),
                "nullable": nullable,
                "description": field.description,
            }
            if field.is_required() or not nullable:
                required.append(name)

        return {
            "collection_name": cls.collection_name,
            "primary_key": cls.primary_key,
            "unique": list(cls.unique_fields),
            "properties": properties,
            "required": required,
        }

    @staticmethod
    def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
        origin = get_origin(annotation)
        if origin is Union or origin is types.UnionType:
            args = [a for a in get_args(annotation) if a is not type(None)]
            nullable = len(args) != len(get_args(annotation))
            return (args[0] if len(args) == 1 else annotation), nullable
        return annotation, False

    @staticmethod
    def _map_type(annotation: Any) -> str:
        """
        Map a Python annotation to a generic logical type; the generator
        turns these into dialect-specific column types.
        """
        origin = get_origin(annotation)
        if origin in (list, tuple, set, frozenset):
            return "array"
        if origin is dict:
            return "object"

        if isinstance(annotation, type):
            # bool before int: bool is an int subclass
            if issubclass(annotation, bool):
                return "boolean"
            if issubclass(annotation, Enum):
                return "string"
            if issubclass(annotation, int):
                return "integer"
            if issubclass(annotation, Decimal):
                return "decimal"
            if issubclass(annotation, float):
                return "number"
            if issubclass(annotation, str):
                return "string"
            if issubclass(annotation, datetime):
                return "datetime"
            if issubclass(annotation, BaseModel):
                return "object"

        name = getattr(annotation, "__name__", "object")
        return name.lower()
