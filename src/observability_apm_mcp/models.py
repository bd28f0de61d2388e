# Observability APM MCP Server
# File: models.py
# Version: v1

"""Tabular result models shared by the clients and the transformer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class Field:
    """One column of a data frame."""

    name: str
    type: Optional[str] = None
    values: List[Any] = field(default_factory=list)


@dataclass
class DataFrame:
    """Column-oriented query result.

    Every field is expected to hold ``size`` values. This is not validated;
    consumers read index by index and treat short columns as missing values.
    """

    fields: List[Field] = field(default_factory=list)
    size: int = 0
    name: Optional[str] = None

    # Extra metadata (query string, totals, etc.).
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def empty(cls, meta: Optional[Dict[str, Any]] = None) -> "DataFrame":
        return cls(fields=[], size=0, meta=meta)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DataFrame":
        """Build a frame from the ``{fields: [{name, type, values}], size}`` shape."""
        raw_fields = payload.get("fields") or []
        fields: List[Field] = []
        for item in raw_fields:
            if isinstance(item, Field):
                fields.append(item)
            elif isinstance(item, Mapping):
                fields.append(
                    Field(
                        name=str(item.get("name")),
                        type=item.get("type"),
                        values=list(item.get("values") or []),
                    )
                )

        size = payload.get("size")
        if size is None:
            size = max((len(f.values) for f in fields), default=0)

        return cls(
            fields=fields,
            size=int(size),
            name=payload.get("name"),
            meta=dict(payload.get("meta") or {}),
        )

    @classmethod
    def from_jdbc(cls, payload: Mapping[str, Any]) -> "DataFrame":
        """Build a frame from an OpenSearch PPL response in JDBC format.

        The JDBC format is row-oriented::

            {"schema": [{"name": "a", "type": "string"}],
             "datarows": [["x"], ["y"]], "total": 2, "size": 2}
        """
        schema = payload.get("schema") or []
        datarows = payload.get("datarows") or []

        columns: List[Field] = []
        for col in schema:
            if not isinstance(col, Mapping):
                continue
            columns.append(Field(name=str(col.get("name")), type=col.get("type")))

        rows = [r for r in datarows if isinstance(r, (list, tuple))]
        for index, col in enumerate(columns):
            col.values = [row[index] if index < len(row) else None for row in rows]

        meta = {"total": payload.get("total", len(rows))}
        return cls(fields=columns, size=len(rows), meta=meta)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": [
                {"name": f.name, "type": f.type, "values": list(f.values)}
                for f in self.fields
            ],
            "size": self.size,
            "name": self.name,
            "meta": dict(self.meta or {}),
        }


@dataclass
class TimeRange:
    """Inclusive time range in epoch seconds."""

    start: int
    end: int
