"""
SQLite-based persistence for ShadeSwap engine state.

Stores deposits (in leaf order), spent claim keys, stealth announcements,
registered meta-addresses, request sequences, vault balances and claim
statistics so that a gate can recover after a restart.  Writes happen
only after an engine operation commits: event rows through an
``EventLog`` subscription, the rest through an engine commit hook.

Usage:
    store = EngineStore("data/shadeswap.db")
    store.restore(engine)      # before serving
    store.attach(engine)       # persist from now on
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from shadeswap_core.events import Announcement, DepositEvent, Event, PrivateSwapExecuted
from shadeswap_core.stealth import StealthMetaAddress

logger = logging.getLogger("shadeswap.storage")


class EngineStore:
    """Thin SQLite wrapper for persisting engine state."""

    def __init__(self, db_path: str = "data/shadeswap.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS deposits (
                leaf_index INTEGER PRIMARY KEY,
                commitment TEXT NOT NULL UNIQUE,
                timestamp  REAL NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS spent_claims (
                claim_key TEXT PRIMARY KEY,
                recipient TEXT NOT NULL,
                relayer   TEXT NOT NULL,
                amount    TEXT NOT NULL,
                fee       TEXT NOT NULL,
                timestamp REAL NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS announcements (
                id                INTEGER PRIMARY KEY AUTOINCREMENT,
                scheme_id         INTEGER NOT NULL,
                stealth_address   TEXT NOT NULL,
                caller            TEXT NOT NULL,
                ephemeral_pub_key TEXT NOT NULL,
                metadata          TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS meta_addresses (
                registrant TEXT PRIMARY KEY,
                meta       TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS balances (
                holder TEXT NOT NULL,
                token  TEXT NOT NULL,
                amount TEXT NOT NULL,
                PRIMARY KEY (holder, token)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS sequences (
                holder        TEXT PRIMARY KEY,
                next_sequence INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS stats (
                id           INTEGER PRIMARY KEY CHECK (id = 1),
                total_claims INTEGER NOT NULL,
                total_volume TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    CURRENT_SCHEMA_VERSION = 1

    def _ensure_schema_version(self) -> None:
        """Check / set schema version."""
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade ShadeSwap."
            )

    @property
    def schema_version(self) -> int:
        row = self._conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
        return row["version"]

    # ── event rows ───────────────────────────────────────────────
    # Amounts are stored as decimal text: they routinely exceed SQLite's int64.

    def save_deposit(self, event: DepositEvent) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO deposits (leaf_index, commitment, timestamp) VALUES (?, ?, ?)",
            (event.leaf_index, hex(event.commitment), event.timestamp),
        )
        self._conn.commit()

    def load_deposits(self) -> list[int]:
        rows = self._conn.execute("SELECT commitment FROM deposits ORDER BY leaf_index").fetchall()
        return [int(r["commitment"], 16) for r in rows]

    def save_spent_claim(self, event: PrivateSwapExecuted) -> None:
        self._conn.execute(
            """INSERT OR IGNORE INTO spent_claims
               (claim_key, recipient, relayer, amount, fee, timestamp)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (event.nullifier_hash, event.recipient, event.relayer,
             str(event.amount), str(event.fee), event.timestamp),
        )
        self._conn.commit()

    def load_spent_claims(self) -> set[str]:
        rows = self._conn.execute("SELECT claim_key FROM spent_claims").fetchall()
        return {r["claim_key"] for r in rows}

    def save_announcement(self, event: Announcement) -> None:
        self._conn.execute(
            """INSERT INTO announcements
               (scheme_id, stealth_address, caller, ephemeral_pub_key, metadata)
               VALUES (?, ?, ?, ?, ?)""",
            (event.scheme_id, event.stealth_address, event.caller,
             event.ephemeral_pub_key.hex(), event.metadata.hex()),
        )
        self._conn.commit()

    def load_announcements(self, since: int = 0, limit: int = 100) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM announcements WHERE id > ? ORDER BY id LIMIT ?", (since, limit),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "scheme_id": r["scheme_id"],
                "stealth_address": r["stealth_address"],
                "caller": r["caller"],
                "ephemeral_pub_key": "0x" + r["ephemeral_pub_key"],
                "metadata": "0x" + r["metadata"],
            }
            for r in rows
        ]

    def record_event(self, event: Event) -> None:
        if isinstance(event, DepositEvent):
            self.save_deposit(event)
        elif isinstance(event, PrivateSwapExecuted):
            self.save_spent_claim(event)
        elif isinstance(event, Announcement):
            self.save_announcement(event)

    # ── snapshot rows ────────────────────────────────────────────

    def snapshot(self, engine: Any) -> None:
        """
        Persist balances, meta-addresses, sequences and stats in a single
        transaction so a crash mid-write leaves the previous snapshot intact.
        """
        c = self._conn
        total_claims, total_volume = engine.get_stats()
        c.execute("BEGIN")
        try:
            c.execute("DELETE FROM balances")
            c.executemany(
                "INSERT INTO balances (holder, token, amount) VALUES (?, ?, ?)",
                [(h, t, str(v)) for h, t, v in engine.vault.snapshot()],
            )
            c.executemany(
                "INSERT OR REPLACE INTO meta_addresses (registrant, meta) VALUES (?, ?)",
                [(k, m.hex()) for k, m in engine.stealth_registry.entries().items()],
            )
            c.executemany(
                "INSERT OR REPLACE INTO sequences (holder, next_sequence) VALUES (?, ?)",
                list(engine.authenticator.sequences().items()),
            )
            c.execute(
                "INSERT OR REPLACE INTO stats (id, total_claims, total_volume) VALUES (1, ?, ?)",
                (total_claims, str(total_volume)),
            )
            c.execute("COMMIT")
        except Exception:
            c.execute("ROLLBACK")
            raise

    def load_balances(self) -> list[tuple[str, str, int]]:
        rows = self._conn.execute("SELECT * FROM balances").fetchall()
        return [(r["holder"], r["token"], int(r["amount"])) for r in rows]

    def load_meta_addresses(self) -> dict[str, StealthMetaAddress]:
        rows = self._conn.execute("SELECT * FROM meta_addresses").fetchall()
        return {r["registrant"]: StealthMetaAddress.from_hex(r["meta"]) for r in rows}

    def load_sequences(self) -> dict[str, int]:
        rows = self._conn.execute("SELECT * FROM sequences").fetchall()
        return {r["holder"]: r["next_sequence"] for r in rows}

    def load_stats(self) -> tuple[int, int]:
        row = self._conn.execute("SELECT * FROM stats WHERE id = 1").fetchone()
        if row is None:
            return 0, 0
        return row["total_claims"], int(row["total_volume"])

    # ── engine wiring ────────────────────────────────────────────

    def attach(self, engine: Any) -> None:
        engine.events.subscribe(self.record_event)
        engine.add_commit_hook(self.snapshot)

    def restore(self, engine: Any) -> int:
        """
        Rebuild engine state from the database.  Deposits are replayed in
        leaf order, which reproduces the tree and its root history exactly.
        Returns the number of deposits replayed.
        """
        commitments = self.load_deposits()
        for commitment in commitments:
            engine.accumulator.insert(commitment)
        engine.nullifiers.restore(self.load_spent_claims())
        engine.vault.restore(self.load_balances())
        engine.stealth_registry.restore(self.load_meta_addresses())
        engine.authenticator.restore(self.load_sequences())
        engine.gate.total_claims, engine.gate.total_volume = self.load_stats()
        logger.info(
            f"Restored {len(commitments)} deposit(s), {len(engine.nullifiers)} spent claim(s)"
        )
        return len(commitments)

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
