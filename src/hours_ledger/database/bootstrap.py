"""Schema bootstrap for the ledger database.

``schema.sql`` carries its own ``CREATE DATABASE``/``USE`` header for manual
runs; both are dropped here so the configured database name always wins.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, Optional

import mysql.connector

from .connection import DBConfig
from .mysql_base import translate_mysql_error

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "hours_ledger"

_HEADER_RE = re.compile(r"(?im)^\s*(CREATE\s+DATABASE|USE)\b.*?;\s*$")


def db_config_from_dict(db_config: dict) -> DBConfig:
    return DBConfig(
        host=str(db_config.get("host", "localhost")),
        port=int(db_config.get("port", 3306)),
        user=str(db_config.get("user", "root")),
        password=str(db_config.get("password", "")),
        database=str(db_config.get("database", DEFAULT_DATABASE)),
    )


def strip_database_header(sql: str) -> str:
    return _HEADER_RE.sub("", sql)


def split_statements(sql: str) -> Iterator[str]:
    """Yield the ``;``-terminated statements of a schema script.

    Full-line ``--`` comments are skipped; a ``;`` inside a quoted literal does
    not end a statement.
    """

    buf: list[str] = []
    quote: Optional[str] = None
    escaped = False

    for line in sql.splitlines(keepends=True):
        if quote is None and line.lstrip().startswith("--"):
            continue
        for ch in line:
            if escaped:
                escaped = False
            elif ch == "\\" and quote is not None:
                escaped = True
            elif quote is not None:
                if ch == quote:
                    quote = None
            elif ch in ("'", '"', "`"):
                quote = ch
            elif ch == ";":
                stmt = "".join(buf).strip()
                buf.clear()
                if stmt:
                    yield stmt
                continue
            buf.append(ch)

    tail = "".join(buf).strip()
    if tail:
        yield tail


def _open(config: DBConfig, *, with_database: bool = True):
    kwargs = dict(host=config.host, port=config.port, user=config.user, password=config.password)
    if with_database:
        kwargs["database"] = config.database
    try:
        return mysql.connector.connect(**kwargs)
    except mysql.connector.Error as exc:
        logger.error("Could not connect to %s@%s:%s: %s", config.user, config.host, config.port, exc)
        raise translate_mysql_error(exc) from exc


def ensure_database_exists(db_config: dict) -> None:
    config = db_config_from_dict(db_config)
    conn = _open(config, with_database=False)
    try:
        cur = conn.cursor()
        cur.execute(
            f"CREATE DATABASE IF NOT EXISTS `{config.database}` "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        conn.commit()
    finally:
        conn.close()


def apply_schema(db_config: dict, *, schema_path: str | Path) -> int:
    """Create the database and run every statement of ``schema_path``.

    Statements are idempotent (``CREATE TABLE IF NOT EXISTS``). Returns the
    number of statements executed.
    """

    ensure_database_exists(db_config)
    statements = list(split_statements(strip_database_header(Path(schema_path).read_text(encoding="utf-8"))))

    conn = _open(db_config_from_dict(db_config))
    try:
        cur = conn.cursor()
        for stmt in statements:
            cur.execute(stmt)
        conn.commit()
    except mysql.connector.Error as exc:
        raise translate_mysql_error(exc) from exc
    finally:
        conn.close()

    logger.info("Applied %d schema statement(s) from %s", len(statements), schema_path)
    return len(statements)


def list_tables(db_config: dict) -> list[str]:
    conn = _open(db_config_from_dict(db_config))
    try:
        cur = conn.cursor()
        cur.execute("SHOW TABLES")
        return sorted(row[0] for row in cur.fetchall())
    finally:
        conn.close()
