from __future__ import annotations

import json

from billing_management.schema_generator import (
    generate_logical_schema,
    render_nosql_schema,
    render_sql_ddl,
)


def test_logical_schema_covers_every_collection():
    schema = generate_logical_schema()
    assert set(schema) == {"users", "billing", "projects", "billing_ledger"}

    billing = schema["billing"]["properties"]
    assert billing["plan_price"]["type"] == "decimal"
    assert billing["add_ons"]["type"] == "array"
    assert billing["billing_cycle"]["type"] == "string"
    assert billing["image_credits"]["type"] == "integer"
    assert billing["subscription_end_date"]["nullable"] is True
    assert schema["billing"]["unique"] == ["user_id"]
    assert schema["projects"]["properties"]["base_documents"]["nullable"] is True


def test_sql_ddl():
    ddl = render_sql_ddl(generate_logical_schema())
    assert 'CREATE TABLE IF NOT EXISTS "billing"' in ddl
    assert 'UNIQUE ("user_id")' in ddl
    assert 'UNIQUE ("email")' in ddl
    assert '"add_ons" JSONB' in ddl
    assert '"plan_price" NUMERIC(12, 2)' in ddl

    mysql = render_sql_ddl(generate_logical_schema(), dialect="mysql")
    assert "JSONB" not in mysql


def test_nosql_schema_is_json():
    parsed = json.loads(render_nosql_schema(generate_logical_schema()))
    assert parsed["users"]["primary_key"] == "id"
