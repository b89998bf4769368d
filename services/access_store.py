"""
SQLite-backed record store for units, devices, one-time credentials and access logs.

This module provides the persistence layer the gateway reads its domain records from and
writes its audit trail to. It uses SQLite through Python's standard `sqlite3` module, with a
fresh connection per call, so the store can be shared between request handlers running in
worker threads (async callers go through `asyncio.to_thread`).

Tables:
- units: apartments addressed by a unique slug; only published units accept guests.
- devices: controllable endpoints, each bound to one unit, with an opaque vendor config blob.
- access_credentials: one-time guest authorizations. Only the SHA-256 hash of the token is
  stored. `revoked` doubles as the consumed flag.
- access_logs: append-only audit entries.

Consumption is a single conditional UPDATE (`... WHERE id = ? AND revoked = 0`); SQLite
serializes writers, so of two concurrent claims exactly one sees rowcount == 1. Datetimes are
stored as ISO 8601 UTC strings and compared in Python.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from shared.models import AccessAction, AccessCredential, AccessLogEntry, Device, Unit
from shared.utils import ensure_utc, hash_token, parse_device_config, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS units (
    id         TEXT PRIMARY KEY,
    slug       TEXT NOT NULL UNIQUE,
    name       TEXT,
    published  INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS devices (
    id           TEXT PRIMARY KEY,
    unit_id      TEXT REFERENCES units(id),
    vendor       TEXT NOT NULL,
    external_id  TEXT,
    name         TEXT,
    config       TEXT,
    active       INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS access_credentials (
    id          TEXT PRIMARY KEY,
    device_id   TEXT NOT NULL REFERENCES devices(id),
    token_hash  TEXT NOT NULL,
    valid_from  TEXT NOT NULL,
    valid_to    TEXT NOT NULL,
    revoked     INTEGER NOT NULL DEFAULT 0,
    revoked_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_credentials_lookup
    ON access_credentials (device_id, token_hash);
CREATE TABLE IF NOT EXISTS access_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    unit_id     TEXT,
    device_id   TEXT,
    action      TEXT NOT NULL,
    success     INTEGER NOT NULL,
    ip_address  TEXT,
    user_agent  TEXT,
    timestamp   TEXT NOT NULL
);
"""


def _to_db(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value is not None else None


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


class AccessStore:
    """
    Record store over a single SQLite file.

    Args:
        db_path (str): Filesystem path of the database; parent directories are created by
            `init_db`.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path, timeout=10)
        con.row_factory = sqlite3.Row
        return con

    def init_db(self) -> None:
        """Create the database file and all tables if they do not exist yet."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        con = self._connect()
        try:
            con.executescript(SCHEMA)
            con.commit()
        finally:
            con.close()
        logger.info(f"Access store ready at {self.db_path}")

    # --- units and devices ---

    def upsert_unit(self, unit: Unit) -> None:
        con = self._connect()
        try:
            con.execute(
                """
                INSERT INTO units (id, slug, name, published) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    slug = excluded.slug, name = excluded.name, published = excluded.published
                """,
                (unit.id, unit.slug, unit.name, int(unit.published)),
            )
            con.commit()
        finally:
            con.close()

    def upsert_device(self, device: Device) -> None:
        con = self._connect()
        try:
            con.execute(
                """
                INSERT INTO devices (id, unit_id, vendor, external_id, name, config, active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    unit_id = excluded.unit_id, vendor = excluded.vendor,
                    external_id = excluded.external_id, name = excluded.name,
                    config = excluded.config, active = excluded.active
                """,
                (
                    device.id,
                    device.unit_id,
                    device.vendor,
                    device.external_id,
                    device.name,
                    json.dumps(device.config or {}),
                    int(device.active),
                ),
            )
            con.commit()
        finally:
            con.close()

    @staticmethod
    def _row_to_device(row: sqlite3.Row) -> Device:
        return Device(
            id=row["id"],
            vendor=row["vendor"],
            external_id=row["external_id"],
            config=parse_device_config(row["config"]),
            active=bool(row["active"]),
            unit_id=row["unit_id"],
            name=row["name"] or "",
        )

    def get_device(self, device_id: str) -> Optional[Device]:
        con = self._connect()
        try:
            row = con.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
        finally:
            con.close()
        return self._row_to_device(row) if row else None

    def get_unit_by_slug(self, slug: str) -> Optional[Unit]:
        con = self._connect()
        try:
            row = con.execute("SELECT * FROM units WHERE slug = ?", (slug,)).fetchone()
        finally:
            con.close()
        if row is None:
            return None
        return Unit(id=row["id"], slug=row["slug"], name=row["name"] or "", published=bool(row["published"]))

    def find_bound_device(self, device_id: str, slug: str) -> Optional[Device]:
        """
        Return the device only if it is active and belongs to the published unit `slug`.

        Args:
            device_id (str): Device identifier from the request.
            slug (str): Unit slug from the request.

        Returns:
            Optional[Device]: The device, or None when any binding condition fails.
        """
        con = self._connect()
        try:
            row = con.execute(
                """
                SELECT d.* FROM devices d
                JOIN units u ON u.id = d.unit_id
                WHERE d.id = ? AND u.slug = ? AND d.active = 1 AND u.published = 1
                """,
                (device_id, slug),
            ).fetchone()
        finally:
            con.close()
        return self._row_to_device(row) if row else None

    # --- credentials ---

    def add_credential(
        self,
        device_id: str,
        token: str,
        valid_from: datetime,
        valid_to: datetime,
        credential_id: Optional[str] = None,
    ) -> AccessCredential:
        """
        Store a new one-time credential; the raw token is hashed and not kept.

        Returns:
            AccessCredential: The stored record.
        """
        credential = AccessCredential(
            id=credential_id or str(uuid.uuid4()),
            device_id=device_id,
            token_hash=hash_token(token),
            valid_from=ensure_utc(valid_from),
            valid_to=ensure_utc(valid_to),
        )
        con = self._connect()
        try:
            con.execute(
                """
                INSERT INTO access_credentials (id, device_id, token_hash, valid_from, valid_to, revoked)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (
                    credential.id,
                    credential.device_id,
                    credential.token_hash,
                    _to_db(credential.valid_from),
                    _to_db(credential.valid_to),
                ),
            )
            con.commit()
        finally:
            con.close()
        return credential

    @staticmethod
    def _row_to_credential(row: sqlite3.Row) -> AccessCredential:
        return AccessCredential(
            id=row["id"],
            device_id=row["device_id"],
            token_hash=row["token_hash"],
            valid_from=_from_db(row["valid_from"]),
            valid_to=_from_db(row["valid_to"]),
            revoked=bool(row["revoked"]),
            revoked_at=_from_db(row["revoked_at"]),
        )

    def get_credential(self, credential_id: str) -> Optional[AccessCredential]:
        con = self._connect()
        try:
            row = con.execute(
                "SELECT * FROM access_credentials WHERE id = ?", (credential_id,)
            ).fetchone()
        finally:
            con.close()
        return self._row_to_credential(row) if row else None

    def find_valid_credential(
        self, device_id: str, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[AccessCredential]:
        """
        Return an unrevoked credential for (device, token) whose window contains `now`.

        Bounds are inclusive: a token used exactly at valid_from or valid_to is accepted.
        """
        now = ensure_utc(now or utc_now())
        con = self._connect()
        try:
            rows = con.execute(
                """
                SELECT * FROM access_credentials
                WHERE device_id = ? AND token_hash = ? AND revoked = 0
                """,
                (device_id, token_hash),
            ).fetchall()
        finally:
            con.close()
        for row in rows:
            credential = self._row_to_credential(row)
            if credential.is_valid_at(now):
                return credential
        return None

    def claim_credential(self, credential_id: str) -> bool:
        """
        Atomically consume a credential.

        Returns:
            bool: True for the single caller that flipped revoked 0 -> 1; False for everyone
            else (already consumed or unknown id).
        """
        con = self._connect()
        try:
            cur = con.execute(
                "UPDATE access_credentials SET revoked = 1, revoked_at = ? WHERE id = ? AND revoked = 0",
                (_to_db(utc_now()), credential_id),
            )
            con.commit()
            return cur.rowcount == 1
        finally:
            con.close()

    def release_credential(self, credential_id: str) -> bool:
        """Undo a claim after a failed dispatch so the guest can retry."""
        con = self._connect()
        try:
            cur = con.execute(
                "UPDATE access_credentials SET revoked = 0, revoked_at = NULL WHERE id = ? AND revoked = 1",
                (credential_id,),
            )
            con.commit()
            return cur.rowcount == 1
        finally:
            con.close()

    # --- access logs ---

    def append_access_log(self, entry: AccessLogEntry) -> None:
        con = self._connect()
        try:
            con.execute(
                """
                INSERT INTO access_logs (unit_id, device_id, action, success, ip_address, user_agent, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.unit_id,
                    entry.device_id,
                    entry.action.value,
                    int(entry.success),
                    entry.ip_address,
                    entry.user_agent,
                    _to_db(entry.timestamp),
                ),
            )
            con.commit()
        finally:
            con.close()

    def list_access_logs(self, device_id: Optional[str] = None, limit: int = 100) -> List[AccessLogEntry]:
        """Most recent access log entries first, optionally filtered by device."""
        query = "SELECT * FROM access_logs"
        params: tuple = ()
        if device_id is not None:
            query += " WHERE device_id = ?"
            params = (device_id,)
        query += " ORDER BY id DESC LIMIT ?"
        con = self._connect()
        try:
            rows = con.execute(query, params + (limit,)).fetchall()
        finally:
            con.close()
        return [
            AccessLogEntry(
                unit_id=row["unit_id"],
                device_id=row["device_id"],
                action=AccessAction(row["action"]),
                success=bool(row["success"]),
                ip_address=row["ip_address"],
                user_agent=row["user_agent"],
                timestamp=_from_db(row["timestamp"]),
            )
            for row in rows
        ]
