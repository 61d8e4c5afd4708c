from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List, Type

from .models.base import DBSerializableModel
from .models.billing import BillingRecord
from .models.ledger import LedgerEntry
from .models.project import Project
from .models.user import UserAccount


MODEL_REGISTRY: List[Type[DBSerializableModel]] = [
    UserAccount,
    BillingRecord,
    Project,
    LedgerEntry,
]


def generate_logical_schema() -> Dict[str, Any]:
    """
    Backend-agnostic logical schema for all registered models.
    SQL and NoSQL renderers both start from this.
    """
    return {model.collection_name: model.db_schema() for model in MODEL_REGISTRY}


def render_sql_ddl(schema: Dict[str, Any], dialect: str = "postgres") -> str:
    """
    Small SQL DDL renderer. Arrays and nested objects (add-ons, purchase
    histories, ledger details) become JSON columns.
    """
    statements: List[str] = []
    for table_name, spec in schema.items():
        pk = spec.get("primary_key") or "id"
        required = set(spec.get("required", []))
        columns: List[str] = []
        for field_name, meta in spec["properties"].items():
            sql_type = _map_logical_to_sql(meta["type"], dialect=dialect)
            nullable = "NOT NULL" if field_name in required or field_name == pk else "NULL"
            columns.append(f'    "{field_name}" {sql_type} {nullable}')
        columns.append(f'    PRIMARY KEY ("{pk}")')
        for unique_field in spec.get("unique", []):
            columns.append(f'    UNIQUE ("{unique_field}")')
        statements.append(
            f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n' + ",\n".join(columns) + "\n);\n"
        )
    return "\n".join(statements)


def render_nosql_schema(schema: Dict[str, Any]) -> str:
    return json.dumps(schema, indent=2, default=str)


def _map_logical_to_sql(logical_type: str, dialect: str) -> str:
    logical_type = logical_type.lower()
    if logical_type == "integer":
        return "INTEGER"
    if logical_type == "decimal":
        return "NUMERIC(12, 2)"
    if logical_type == "number":
        return "DOUBLE PRECISION"
    if logical_type == "boolean":
        return "BOOLEAN"
    if logical_type == "datetime":
        return "TIMESTAMPTZ" if dialect == "postgres" else "TIMESTAMP"
    if logical_type in {"array", "object"}:
        return "JSONB" if dialect == "postgres" else "JSON"
    return "TEXT"


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate DB schemas for the billing management package."
    )
    parser.add_argument(
        "--backend",
        choices=["sql", "nosql"],
        required=True,
        help="Type of schema to generate.",
    )
    parser.add_argument(
        "--dialect",
        default="postgres",
        help="SQL dialect hint (e.g. postgres, mysql).",
    )
    args = parser.parse_args()

    schema = generate_logical_schema()

    if args.backend == "sql":
        print(render_sql_ddl(schema, dialect=args.dialect))
    else:
        print(render_nosql_schema(schema))


if __name__ == "__main__":
    main()
