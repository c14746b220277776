from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from .errors import PersistenceError
from .types import WatchRequest

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS watch_requests (
    id TEXT PRIMARY KEY,
    owner_address TEXT NOT NULL,
    collection_name TEXT NOT NULL,
    floor_price_usd TEXT NOT NULL,
    asset_ids TEXT NOT NULL,
    notify_email TEXT,
    is_offer_accepted INTEGER NOT NULL DEFAULT 0,
    matched_maker TEXT,
    matched_amount_usd TEXT,
    settlement_receipt TEXT,
    is_notified INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    claimed_by TEXT,
    claimed_until REAL
)
"""

# Older database files lack these columns.
_CLAIM_COLUMNS = {"claimed_by": "TEXT", "claimed_until": "REAL"}

_COLUMNS = (
    "id, owner_address, collection_name, floor_price_usd, asset_ids, notify_email, "
    "is_offer_accepted, matched_maker, matched_amount_usd, settlement_receipt, is_notified, created_at"
)


class WatchRequestStore:
    """Watch requests kept in SQLite.

    Rows are never deleted. ``record_match`` is the only write that flips
    ``is_offer_accepted`` and it only applies to rows still pending, so a
    repeated call cannot settle a request twice.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.path)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.execute(_SCHEMA)
                existing = {row["name"] for row in self._conn.execute("PRAGMA table_info(watch_requests)")}
                for column, kind in _CLAIM_COLUMNS.items():
                    if column not in existing:
                        self._conn.execute(f"ALTER TABLE watch_requests ADD COLUMN {column} {kind}")
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open watch store at {self.path}: {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def create(self, request: WatchRequest) -> str:
        request_id = request.id or uuid.uuid4().hex
        try:
            with self._conn:
                self._conn.execute(
                    f"INSERT INTO watch_requests ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        request_id,
                        request.owner_address,
                        request.collection_name,
                        str(request.floor_price_usd),
                        json.dumps(request.asset_ids),
                        request.notify_email,
                        int(request.is_offer_accepted),
                        request.matched_maker,
                        _decimal_text(request.matched_amount_usd),
                        request.settlement_receipt,
                        int(request.is_notified),
                        request.created_at.isoformat(),
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot create watch request: {exc}") from exc
        request.id = request_id
        logger.info("Created watch request %s for %s", request_id, request.collection_name)
        return request_id

    def get(self, request_id: str) -> WatchRequest | None:
        rows = self._select("WHERE id = ?", (request_id,))
        return rows[0] if rows else None

    def list_pending(self) -> list[WatchRequest]:
        return self._select("WHERE is_offer_accepted = 0 ORDER BY created_at, id")

    def list_unnotified(self) -> list[WatchRequest]:
        return self._select("WHERE is_offer_accepted = 1 AND is_notified = 0 ORDER BY created_at, id")

    def claim(self, request_id: str, worker: str, ttl_seconds: float, now: float | None = None) -> bool:
        """Take the settlement lease on a pending request.

        Only one worker holds an unexpired lease at a time, across every
        process sharing the database file. An expired lease can be taken
        over, so a crashed worker does not block the request forever.
        """
        now = time.time() if now is None else now
        try:
            with self._conn:
                cursor = self._conn.execute(
                    """
                    UPDATE watch_requests
                    SET claimed_by = ?, claimed_until = ?
                    WHERE id = ? AND is_offer_accepted = 0
                      AND (claimed_until IS NULL OR claimed_until <= ?)
                    """,
                    (worker, now + ttl_seconds, request_id, now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot claim watch request {request_id}: {exc}") from exc
        return cursor.rowcount == 1

    def release(self, request_id: str, worker: str) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    "UPDATE watch_requests SET claimed_by = NULL, claimed_until = NULL "
                    "WHERE id = ? AND claimed_by = ?",
                    (request_id, worker),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot release watch request {request_id}: {exc}") from exc

    def record_match(self, request_id: str, maker: str, amount_usd: Decimal, receipt: str) -> bool:
        try:
            with self._conn:
                cursor = self._conn.execute(
                    """
                    UPDATE watch_requests
                    SET is_offer_accepted = 1,
                        matched_maker = ?,
                        matched_amount_usd = ?,
                        settlement_receipt = ?
                    WHERE id = ? AND is_offer_accepted = 0
                    """,
                    (maker, str(amount_usd), receipt, request_id),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot record match for {request_id}: {exc}") from exc
        applied = cursor.rowcount == 1
        if not applied:
            logger.warning("Match for %s not recorded: request missing or already accepted", request_id)
        return applied

    def mark_notified(self, request_id: str) -> bool:
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE watch_requests SET is_notified = 1 "
                    "WHERE id = ? AND is_offer_accepted = 1 AND is_notified = 0",
                    (request_id,),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot mark {request_id} notified: {exc}") from exc
        return cursor.rowcount == 1

    def _select(self, where: str, params: tuple = ()) -> list[WatchRequest]:
        try:
            rows = self._conn.execute(f"SELECT {_COLUMNS} FROM watch_requests {where}", params).fetchall()
            return [_row_to_request(row) for row in rows]
        except (sqlite3.Error, ValueError, ArithmeticError) as exc:
            raise PersistenceError(f"Cannot read watch requests: {exc}") from exc


def _row_to_request(row: sqlite3.Row) -> WatchRequest:
    return WatchRequest(
        id=row["id"],
        owner_address=row["owner_address"],
        collection_name=row["collection_name"],
        floor_price_usd=Decimal(row["floor_price_usd"]),
        asset_ids=list(json.loads(row["asset_ids"])),
        notify_email=row["notify_email"],
        is_offer_accepted=bool(row["is_offer_accepted"]),
        matched_maker=row["matched_maker"],
        matched_amount_usd=Decimal(row["matched_amount_usd"]) if row["matched_amount_usd"] else None,
        settlement_receipt=row["settlement_receipt"],
        is_notified=bool(row["is_notified"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _decimal_text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)
