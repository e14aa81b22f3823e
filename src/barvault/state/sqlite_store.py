"""SQLite coverage store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from barvault.domain.models import CoverageRecord


class SqliteCoverageStore:
    """SQLite-backed implementation of coverage persistence.

    Concurrent writers for the same series are last-writer-wins.
    """

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(path)
        self.connection.row_factory = sqlite3.Row
        self._initialize_schema()

    def get_coverage(self, symbol: str, timeframe: str) -> CoverageRecord | None:
        row = self.connection.execute(
            """
            SELECT
                source, symbol, timeframe, start_date, end_date,
                adjusted, row_count, path, created_ts
            FROM coverage
            WHERE symbol_key = ? AND timeframe = ?
            """,
            (symbol.upper(), timeframe),
        ).fetchone()
        if row is None:
            return None
        return self._to_record(row)

    def save_coverage(self, record: CoverageRecord) -> None:
        self.connection.execute(
            """
            INSERT OR REPLACE INTO coverage(
                symbol_key,
                timeframe,
                source,
                symbol,
                start_date,
                end_date,
                adjusted,
                row_count,
                path,
                created_ts
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.symbol.upper(),
                record.timeframe,
                record.source,
                record.symbol,
                record.start,
                record.end,
                1 if record.adjusted else 0,
                record.rows,
                record.path,
                record.created_at,
            ),
        )
        self.connection.commit()

    def list_coverage(self, symbol: str | None = None) -> list[CoverageRecord]:
        if symbol is None:
            rows = self.connection.execute(
                """
                SELECT
                    source, symbol, timeframe, start_date, end_date,
                    adjusted, row_count, path, created_ts
                FROM coverage
                ORDER BY symbol_key ASC, timeframe ASC
                """
            ).fetchall()
        else:
            rows = self.connection.execute(
                """
                SELECT
                    source, symbol, timeframe, start_date, end_date,
                    adjusted, row_count, path, created_ts
                FROM coverage
                WHERE symbol_key = ?
                ORDER BY timeframe ASC
                """,
                (symbol.upper(),),
            ).fetchall()
        return [self._to_record(row) for row in rows]

    def close(self) -> None:
        self.connection.close()

    def _initialize_schema(self) -> None:
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS coverage(
                symbol_key TEXT NOT NULL,
                timeframe TEXT NOT NULL,
                source TEXT NOT NULL,
                symbol TEXT NOT NULL,
                start_date TEXT,
                end_date TEXT,
                adjusted INTEGER NOT NULL,
                row_count INTEGER NOT NULL,
                path TEXT NOT NULL,
                created_ts TEXT NOT NULL,
                PRIMARY KEY(symbol_key, timeframe)
            )
            """
        )
        self.connection.commit()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> CoverageRecord:
        return CoverageRecord(
            source=str(row["source"]),
            symbol=str(row["symbol"]),
            timeframe=str(row["timeframe"]),
            start=str(row["start_date"]) if row["start_date"] else None,
            end=str(row["end_date"]) if row["end_date"] else None,
            adjusted=bool(row["adjusted"]),
            rows=int(row["row_count"]),
            path=str(row["path"]),
            created_at=str(row["created_ts"]),
        )
