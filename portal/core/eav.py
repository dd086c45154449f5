"""
EAV (entity-attribute-value) helpers over the shared ``entities``/``attributes`` tables.

Calculations, projects and supplier requests are not relational rows: each
record is an entity whose fields are attribute rows, one typed value column
set per row. Nested calculation data may be stored as one JSON blob
(``calculationData``), as flattened dotted attributes
(``calculationData.selectedClient.name``), or as both.

All helpers take an open connection so a caller can compose several reads
and writes inside one ``get_db()`` block.
"""

import json
import logging

from portal.core.db import new_id, now_ts

log = logging.getLogger("portal.eav")

# Fallback table ids from before tables were registered per organization
CALCULATIONS_TABLE_ID = "fc3eb1c9-224a-4da7-919b-fab762bdc6c6"
PROJECTS_TABLE_ID = "65d05590-1c20-4d88-8e82-bfcbf9b9e23f"

VALUE_COLUMNS = ("string_value", "number_value", "boolean_value", "date_value", "json_value")


# ── Reading values ────────────────────────────────────────────────────────────

def attribute_value(row):
    """First truthy typed column of an attribute row (string wins over json)."""
    return (row["string_value"] or row["number_value"] or row["boolean_value"]
            or row["date_value"] or row["json_value"])


def decode_value(value):
    """Decode string values that look like JSON arrays/objects; others pass through."""
    if isinstance(value, str) and value[:1] in ("[", "{"):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def resolve_table_id(conn, name: str, organization_id=None, fallback=None):
    """Table id registered for an organization, else ``fallback``."""
    if organization_id:
        row = conn.execute(
            "SELECT id FROM table_definitions WHERE organization_id = ? AND name = ? LIMIT 1",
            (organization_id, name),
        ).fetchone()
        if row:
            return row["id"]
    return fallback


def find_entity_id(conn, table_id, attribute_name: str, value):
    """Entity whose string attribute equals ``value``. ``table_id=None`` searches every table."""
    sql = """SELECT e.id FROM entities e
             JOIN attributes a ON a.entity_id = e.id
             WHERE a.attribute_name = ? AND a.string_value = ?"""
    params = [attribute_name, value]
    if table_id:
        sql += " AND e.table_id = ?"
        params.append(table_id)
    row = conn.execute(sql + " LIMIT 1", params).fetchone()
    return row["id"] if row else None


def find_entity_ids(conn, table_id: str, criteria) -> list:
    """Entities in ``table_id`` matching ANY of the criteria.

    ``criteria`` is a list of ``(attribute_name, value, match)`` tuples where
    ``match`` is ``"eq"`` or ``"like"`` (substring match).
    """
    clauses, params = [], [table_id]
    for name, value, match in criteria:
        if match == "like":
            clauses.append("(a.attribute_name = ? AND a.string_value LIKE ?)")
            params.extend([name, f"%{value}%"])
        else:
            clauses.append("(a.attribute_name = ? AND a.string_value = ?)")
            params.extend([name, value])
    if not clauses:
        return []
    sql = f"""SELECT e.id FROM entities e
              WHERE e.table_id = ?
                AND EXISTS (SELECT 1 FROM attributes a
                            WHERE a.entity_id = e.id AND ({' OR '.join(clauses)}))
              ORDER BY e.created_at, e.rowid"""
    return [r["id"] for r in conn.execute(sql, params).fetchall()]


def load_attributes(conn, entity_id: str, names=None) -> dict:
    """All (or the named) attributes of one entity as ``{name: value}``."""
    sql = f"SELECT attribute_name, {', '.join(VALUE_COLUMNS)} FROM attributes WHERE entity_id = ?"
    params = [entity_id]
    if names:
        sql += f" AND attribute_name IN ({','.join('?' * len(names))})"
        params.extend(names)
    return {r["attribute_name"]: attribute_value(r) for r in conn.execute(sql, params).fetchall()}


def load_attributes_batch(conn, entity_ids) -> dict:
    """Attributes for many entities in one query: ``{entity_id: {name: value}}``."""
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}
    rows = conn.execute(
        f"""SELECT entity_id, attribute_name, {', '.join(VALUE_COLUMNS)}
            FROM attributes WHERE entity_id IN ({','.join('?' * len(entity_ids))})""",
        entity_ids,
    ).fetchall()
    data = {}
    for r in rows:
        data.setdefault(r["entity_id"], {})[r["attribute_name"]] = attribute_value(r)
    return data


def reconstruct_nested(attrs: dict, prefix: str = "calculationData"):
    """Split flat attributes into ``(record, nested)``.

    ``prefix`` holding a JSON object is merged into ``nested``; ``prefix.a.b``
    attributes are written at ``nested["a"]["b"]`` in row order, so a later
    row wins. Every other attribute lands in ``record``. JSON-looking
    strings are decoded on the way.
    """
    record, nested = {}, {}
    dotted = prefix + "."
    for name, raw in attrs.items():
        value = decode_value(raw)
        if name.startswith(dotted):
            parts = name[len(dotted):].split(".")
            current = nested
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = value
        elif name == prefix:
            if isinstance(value, dict):
                nested.update(value)
        else:
            record[name] = value
    return record, nested


# ── Writing values ────────────────────────────────────────────────────────────

def _typed_columns(value):
    """(value_type, {column: value}) for a Python value."""
    if isinstance(value, bool):
        return "boolean", {"boolean_value": int(value)}
    if isinstance(value, (int, float)):
        return "number", {"number_value": value}
    if isinstance(value, (dict, list)):
        return "json", {"json_value": json.dumps(value, ensure_ascii=False)}
    return "string", {"string_value": None if value is None else str(value)}


def insert_attribute(conn, entity_id: str, name: str, value) -> str:
    value_type, cols = _typed_columns(value)
    attr_id = new_id()
    column, stored = next(iter(cols.items()))
    conn.execute(
        f"""INSERT INTO attributes (id, entity_id, attribute_name, value_type, {column}, created_at)
            VALUES (?, ?, ?, ?, ?, ?)""",
        (attr_id, entity_id, name, value_type, stored, now_ts()),
    )
    return attr_id


def set_attribute(conn, entity_id: str, name: str, value):
    """Update the attribute in place when present, insert it otherwise."""
    existing = conn.execute(
        "SELECT id FROM attributes WHERE entity_id = ? AND attribute_name = ? LIMIT 1",
        (entity_id, name),
    ).fetchone()
    if not existing:
        return insert_attribute(conn, entity_id, name, value)
    value_type, cols = _typed_columns(value)
    values = {c: cols.get(c) for c in VALUE_COLUMNS}
    conn.execute(
        f"""UPDATE attributes SET value_type = ?, {', '.join(f'{c} = ?' for c in VALUE_COLUMNS)}
            WHERE entity_id = ? AND attribute_name = ?""",
        (value_type, *values.values(), entity_id, name),
    )
    return existing["id"]


def create_entity(conn, table_id: str, attributes: dict, entity_id=None) -> str:
    """Insert an entity row plus one attribute row per non-None value."""
    row_id = new_id()
    ts = now_ts()
    conn.execute(
        "INSERT INTO entities (id, table_id, entity_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (row_id, table_id, entity_id, ts, ts),
    )
    for name, value in attributes.items():
        if value is not None:
            insert_attribute(conn, row_id, name, value)
    return row_id


def ensure_table(conn, name: str, organization_id: str, description: str = "") -> str:
    """Id of the organization's table ``name``, registering it when missing."""
    table_id = resolve_table_id(conn, name, organization_id)
    if table_id:
        return table_id
    table_id = new_id()
    conn.execute(
        """INSERT INTO table_definitions (id, name, organization_id, description, created_at)
           VALUES (?, ?, ?, ?, datetime('now'))""",
        (table_id, name, organization_id, description),
    )
    log.info("Registered EAV table %s for org %s", name, organization_id)
    return table_id
