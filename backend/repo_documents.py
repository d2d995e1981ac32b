"""
Repository: the backing index of tracked documents.

Each application gets its own index, a PostgreSQL table named
`<INDEX_PREFIX>_<application>`, holding one row per tracker id. This file
contains only DB interaction code; deciding when to read or write lives in
`store.py` and `persister.py`.

Important notes:
- Index names end up in DDL, so they are composed with `sql.Identifier`.
  Application names are restricted to `[a-z0-9_]` before they get here.
- `data`, `steps` and `step_logs` are stored as JSONB (GIN indexed for
  `data` and `steps`) so arbitrary nested keys stay queryable.
- An index is hash-partitioned on `tracker_id`; the partition count is
  fixed when the index is created.
- `bulk_upsert` writes the whole batch in one transaction. Either every
  document lands or none does, so a failed batch can be replayed as is.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from db import get_conn
from models import TrackedDocument
from settings import Settings, settings


BulkAction = Tuple[str, str, TrackedDocument]

_SOURCE_COLUMNS = (
    "application",
    "flow",
    "created_at",
    "updated_at",
    "synced",
    "data",
    "steps",
    "step_logs",
)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    tracker_id CHAR(32) NOT NULL,
    application TEXT NOT NULL,
    flow TEXT NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE,
    updated_at TIMESTAMP WITH TIME ZONE,
    synced BOOLEAN NOT NULL DEFAULT FALSE,
    data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    steps JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    step_logs JSONB NOT NULL DEFAULT '[]'::jsonb,
    PRIMARY KEY (tracker_id)
) PARTITION BY HASH (tracker_id)
"""


class DocumentRepo:
    """DB access only. No business logic here.

    Responsibilities:
    - Create and probe per-application indexes
    - Map `TrackedDocument` <-> rows
    - Keep transaction/commit boundaries local and explicit
    """

    def __init__(self, config: Settings = settings):
        self.config = config

    def index_name(self, application: str) -> str:
        return f"{self.config.index_prefix}_{application}"

    def index_exists(self, index: str) -> bool:
        with get_conn(self.config.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass(%s) IS NOT NULL", (index,))
                return bool(cur.fetchone()[0])

    def create_index(self, index: str) -> None:
        """Create the index table, its hash partitions and JSONB indexes."""

        table = sql.Identifier(index)
        shards = max(1, self.config.index_shards)

        with get_conn(self.config.db_url) as conn:
            with conn.cursor() as cur:
                cur.execute(sql.SQL(_CREATE_TABLE).format(table=table))
                for remainder in range(shards):
                    cur.execute(
                        sql.SQL(
                            "CREATE TABLE IF NOT EXISTS {part} PARTITION OF {table} "
                            "FOR VALUES WITH (MODULUS {modulus}, REMAINDER {remainder})"
                        ).format(
                            part=sql.Identifier(f"{index}_p{remainder}"),
                            table=table,
                            modulus=sql.Literal(shards),
                            remainder=sql.Literal(remainder),
                        )
                    )
                for column in ("data", "steps"):
                    cur.execute(
                        sql.SQL(
                            "CREATE INDEX IF NOT EXISTS {name} ON {table} USING GIN ({column})"
                        ).format(
                            name=sql.Identifier(f"idx_{index}_{column}"),
                            table=table,
                            column=sql.Identifier(column),
                        )
                    )
                cur.execute(
                    sql.SQL("COMMENT ON TABLE {table} IS {comment}").format(
                        table=table,
                        comment=sql.Literal(
                            f"shards={shards} replicas={self.config.index_replicas}"
                        ),
                    )
                )
            conn.commit()

    def get_by_id(self, index: str, tracker_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored document as a plain dict, or None if absent."""

        query = sql.SQL("SELECT {columns} FROM {table} WHERE tracker_id = %s").format(
            columns=sql.SQL(", ").join(map(sql.Identifier, _SOURCE_COLUMNS)),
            table=sql.Identifier(index),
        )
        with get_conn(self.config.db_url) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (tracker_id,))
                return cur.fetchone()

    def bulk_upsert(self, actions: Iterable[BulkAction]) -> int:
        """Create-or-replace every document by id. Returns rows written.

        Actions are grouped per index and sent with one executemany() per
        index, all inside a single transaction.
        """

        grouped: Dict[str, List[tuple]] = {}
        for index, tracker_id, document in actions:
            grouped.setdefault(index, []).append(_to_row(tracker_id, document))

        if not grouped:
            return 0

        written = 0
        with get_conn(self.config.db_url) as conn:
            with conn.cursor() as cur:
                for index, rows in grouped.items():
                    cur.executemany(_upsert_query(index), rows)
                    written += len(rows)
            conn.commit()
        return written


def _upsert_query(index: str) -> sql.Composed:
    columns = ("tracker_id",) + _SOURCE_COLUMNS
    return sql.SQL(
        "INSERT INTO {table} ({columns}) VALUES ({values}) "
        "ON CONFLICT (tracker_id) DO UPDATE SET {updates}"
    ).format(
        table=sql.Identifier(index),
        columns=sql.SQL(", ").join(map(sql.Identifier, columns)),
        values=sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        updates=sql.SQL(", ").join(
            sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
            for c in _SOURCE_COLUMNS
        ),
    )


def _to_row(tracker_id: str, document: TrackedDocument) -> tuple:
    source = document.to_source()
    return (
        tracker_id,
        document.application,
        document.flow,
        document.created_at,
        document.updated_at,
        document.synced,
        Jsonb(source["data"]),
        Jsonb(source["steps"]),
        Jsonb(source["step_logs"]),
    )
