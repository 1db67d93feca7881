#!/usr/bin/env python3
"""
Position Database Module for LP PnL Monitor
SQLite storage for positions, strategy snapshots, ledger operations and
scan checkpoints

Version: 1.0.0
"""

import logging
import sqlite3
import threading
from typing import List, Optional

from .models import Position, StrategySnapshot

logger = logging.getLogger(__name__)

# Columns recomputed on every aggregation; everything else in the snapshot
# row is fixed when the position is first recorded.
SNAPSHOT_COMPUTED_COLUMNS = [
    "query_time", "position_duration_h", "base_price_usd", "quote_price_usd",
    "total_add_base_amount", "total_add_quote_amount", "total_add_base_value_usd",
    "total_add_quote_value_usd", "total_add_value_usd",
    "total_remove_base_amount", "total_remove_quote_amount", "total_remove_base_value_usd",
    "total_remove_quote_value_usd", "total_remove_value_usd",
    "total_fee_claim_base_amount", "total_fee_claim_quote_amount", "total_fee_claim_base_value_usd",
    "total_fee_claim_quote_value_usd", "total_fee_claim_value_usd",
    "unclaimed_fee_base_amount", "unclaimed_fee_quote_amount", "unclaimed_fee_base_value_usd",
    "unclaimed_fee_quote_value_usd", "unclaimed_fee_value_usd",
    "current_base_amount", "current_quote_amount", "current_position_value_usd",
    "pnl_total_usd", "pnl_total_percentage", "is_active", "end_block_number",
]


class PositionDatabase:
    """Manages positions, snapshots and checkpoints. The ledger table lives here too."""

    def __init__(self, db_path="lp_positions.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        # One connection shared by worker threads; statements are serialized
        self.lock = threading.RLock()
        self.create_tables()

    def create_tables(self):
        """Create database tables for position tracking"""
        with self.lock, self.conn:
            # One row per position: static fields + latest PnL snapshot
            self.conn.execute('''
                CREATE TABLE IF NOT EXISTS lp_strategy_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query_time TEXT,
                    pair_name TEXT,
                    pool_address TEXT NOT NULL,
                    pool_name TEXT NOT NULL,
                    position_token_id TEXT NOT NULL,
                    position_create_time TEXT,
                    position_duration_h REAL DEFAULT 0,
                    tick_lower INTEGER,
                    tick_upper INTEGER,

                    base_price_usd REAL,
                    quote_price_usd REAL,
                    base_token_address TEXT,
                    quote_token_address TEXT,
                    base_token_location TEXT,

                    total_add_base_amount REAL DEFAULT 0,
                    total_add_quote_amount REAL DEFAULT 0,
                    total_add_base_value_usd REAL DEFAULT 0,
                    total_add_quote_value_usd REAL DEFAULT 0,
                    total_add_value_usd REAL DEFAULT 0,

                    total_remove_base_amount REAL DEFAULT 0,
                    total_remove_quote_amount REAL DEFAULT 0,
                    total_remove_base_value_usd REAL DEFAULT 0,
                    total_remove_quote_value_usd REAL DEFAULT 0,
                    total_remove_value_usd REAL DEFAULT 0,

                    total_fee_claim_base_amount REAL DEFAULT 0,
                    total_fee_claim_quote_amount REAL DEFAULT 0,
                    total_fee_claim_base_value_usd REAL DEFAULT 0,
                    total_fee_claim_quote_value_usd REAL DEFAULT 0,
                    total_fee_claim_value_usd REAL DEFAULT 0,

                    unclaimed_fee_base_amount REAL DEFAULT 0,
                    unclaimed_fee_quote_amount REAL DEFAULT 0,
                    unclaimed_fee_base_value_usd REAL DEFAULT 0,
                    unclaimed_fee_quote_value_usd REAL DEFAULT 0,
                    unclaimed_fee_value_usd REAL DEFAULT 0,

                    current_base_amount REAL DEFAULT 0,
                    current_quote_amount REAL DEFAULT 0,
                    current_position_value_usd REAL DEFAULT 0,

                    pnl_total_usd REAL DEFAULT 0,
                    pnl_total_percentage REAL DEFAULT 0,

                    is_active INTEGER DEFAULT 1,
                    block_number INTEGER,
                    end_block_number INTEGER,
                    owner TEXT,

                    UNIQUE(pool_address, pool_name, position_token_id)
                )
            ''')

            # Append-only operation ledger
            self.conn.execute('''
                CREATE TABLE IF NOT EXISTS lp_operations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    op_time TEXT,
                    op_type TEXT NOT NULL,
                    pool_address TEXT NOT NULL,
                    position_token_id TEXT NOT NULL,
                    base_token_address TEXT,
                    quote_token_address TEXT,
                    base_decimals INTEGER,
                    quote_decimals INTEGER,
                    base_amount REAL DEFAULT 0,
                    base_price_usd REAL,
                    quote_amount REAL DEFAULT 0,
                    quote_price_usd REAL,
                    liquidity TEXT NOT NULL DEFAULT '0',
                    tx_hash TEXT NOT NULL,
                    block_number INTEGER NOT NULL,
                    log_index INTEGER DEFAULT 0,

                    UNIQUE(pool_address, position_token_id, tx_hash, op_type)
                )
            ''')
            self.conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_lp_operations_position
                ON lp_operations(pool_address, position_token_id, block_number)
            ''')

            # Key/value parameters (scan checkpoints)
            self.conn.execute('''
                CREATE TABLE IF NOT EXISTS lp_parameters (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    param_key TEXT NOT NULL UNIQUE,
                    param_value TEXT,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')

    # Positions

    def insert_position(self, position: Position) -> bool:
        """Record a newly discovered position. Returns False if it already exists."""
        with self.lock, self.conn:
            cursor = self.conn.execute('''
                INSERT INTO lp_strategy_snapshots (
                    pair_name, pool_address, pool_name, position_token_id,
                    position_create_time, tick_lower, tick_upper,
                    base_token_address, quote_token_address, base_token_location,
                    is_active, block_number, owner
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(pool_address, pool_name, position_token_id) DO NOTHING
            ''', (
                position.pair_name, position.pool_address, position.pool_name,
                str(position.position_token_id), position.creation_time,
                position.tick_lower, position.tick_upper,
                position.base_token_address, position.quote_token_address,
                position.base_token_location, 1 if position.is_active else 0,
                position.creation_block, position.owner,
            ))
        inserted = cursor.rowcount > 0
        if inserted:
            logger.info("Recorded position #%s in %s (%s)", position.position_token_id,
                        position.pool_name, position.pair_name)
        return inserted

    def position_exists(self, pool_name, position_token_id) -> bool:
        with self.lock:
            row = self.conn.execute(
                'SELECT 1 FROM lp_strategy_snapshots WHERE pool_name = ? AND position_token_id = ?',
                (pool_name, str(position_token_id))
            ).fetchone()
        return row is not None

    def get_position(self, pool_address, position_token_id, pool_name) -> Optional[Position]:
        with self.lock:
            row = self.conn.execute('''
                SELECT * FROM lp_strategy_snapshots
                WHERE pool_address = ? AND position_token_id = ? AND pool_name = ?
            ''', (pool_address, str(position_token_id), pool_name)).fetchone()
        return Position.from_row(row) if row else None

    def get_all_active_positions(self, pool_name) -> List[Position]:
        """All active positions for one DEX"""
        with self.lock:
            rows = self.conn.execute('''
                SELECT * FROM lp_strategy_snapshots
                WHERE is_active = 1 AND pool_name = ?
                ORDER BY block_number ASC
            ''', (pool_name,)).fetchall()
        return [Position.from_row(row) for row in rows]

    def get_inactive_positions(self, pool_name) -> List[Position]:
        """Closed positions for one DEX; candidates for reactivation"""
        with self.lock:
            rows = self.conn.execute('''
                SELECT * FROM lp_strategy_snapshots
                WHERE is_active = 0 AND pool_name = ?
                ORDER BY block_number ASC
            ''', (pool_name,)).fetchall()
        return [Position.from_row(row) for row in rows]

    def get_active_positions_by_owner(self, owner) -> List[StrategySnapshot]:
        """Active snapshot rows for one wallet, across all DEXes"""
        with self.lock:
            rows = self.conn.execute('''
                SELECT * FROM lp_strategy_snapshots
                WHERE is_active = 1 AND lower(owner) = lower(?)
                ORDER BY pool_name, block_number
            ''', (owner,)).fetchall()
        return [StrategySnapshot.from_row(row) for row in rows]

    # Snapshots

    def upsert_snapshot(self, snapshot: StrategySnapshot):
        """Insert or refresh the snapshot row for a position.

        Static fields are only written on first insert.
        """
        row = snapshot.to_row()
        columns = list(row.keys())
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{col} = excluded.{col}" for col in SNAPSHOT_COMPUTED_COLUMNS)
        sql = f'''
            INSERT INTO lp_strategy_snapshots ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT(pool_address, pool_name, position_token_id) DO UPDATE SET {updates}
        '''
        with self.lock, self.conn:
            self.conn.execute(sql, [row[col] for col in columns])

    def get_snapshot(self, pool_address, position_token_id, pool_name) -> Optional[StrategySnapshot]:
        with self.lock:
            row = self.conn.execute('''
                SELECT * FROM lp_strategy_snapshots
                WHERE pool_address = ? AND position_token_id = ? AND pool_name = ?
            ''', (pool_address, str(position_token_id), pool_name)).fetchone()
        return StrategySnapshot.from_row(row) if row else None

    def count_snapshots(self) -> int:
        with self.lock:
            return self.conn.execute('SELECT COUNT(*) FROM lp_strategy_snapshots').fetchone()[0]

    # Parameters

    def get_param(self, key) -> Optional[str]:
        with self.lock:
            row = self.conn.execute(
                'SELECT param_value FROM lp_parameters WHERE param_key = ?', (key,)
            ).fetchone()
        return row["param_value"] if row else None

    def upsert_param(self, key, value):
        with self.lock, self.conn:
            self.conn.execute('''
                INSERT INTO lp_parameters (param_key, param_value) VALUES (?, ?)
                ON CONFLICT(param_key) DO UPDATE SET
                    param_value = excluded.param_value,
                    updated_at = CURRENT_TIMESTAMP
            ''', (key, str(value)))

    def close(self):
        """Close database connection"""
        with self.lock:
            self.conn.close()
