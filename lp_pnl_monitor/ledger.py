#!/usr/bin/env python3
"""
Operation Ledger Module for LP PnL Monitor
Append-only, idempotent store of position operations with ordered replay

Re-scanning an overlapping block range is always safe: the UNIQUE
(pool_address, position_token_id, tx_hash, op_type) constraint in SQLite
turns duplicate inserts into no-ops.

Version: 1.0.0
"""

import logging
from typing import Iterable, List

from .constants import OPERATION_TYPES
from .models import Operation

logger = logging.getLogger(__name__)

_INSERT_SQL = '''
    INSERT INTO lp_operations (
        op_time, op_type, pool_address, position_token_id,
        base_token_address, quote_token_address, base_decimals, quote_decimals,
        base_amount, base_price_usd, quote_amount, quote_price_usd,
        liquidity, tx_hash, block_number, log_index
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(pool_address, position_token_id, tx_hash, op_type) DO NOTHING
'''


def _operation_params(op: Operation):
    if op.op_type not in OPERATION_TYPES:
        raise ValueError(f"Unknown operation type: {op.op_type}")
    return (
        op.op_time, op.op_type, op.pool_address, str(op.position_token_id),
        op.base_token_address, op.quote_token_address, op.base_decimals, op.quote_decimals,
        op.base_amount, op.base_price_usd, op.quote_amount, op.quote_price_usd,
        str(op.liquidity_delta), op.tx_hash.lower(), op.block_number, op.log_index,
    )


class OperationLedger:
    """Ledger of IncreaseLiquidity / DecreaseLiquidity / Collect operations"""

    def __init__(self, db):
        self.db = db

    def record(self, operation: Operation) -> bool:
        """Insert one operation; returns False when it was already recorded"""
        params = _operation_params(operation)
        with self.db.lock, self.db.conn:
            cursor = self.db.conn.execute(_INSERT_SQL, params)
        return cursor.rowcount > 0

    def record_many(self, operations: Iterable[Operation]) -> int:
        """Insert a batch in a single transaction; returns how many rows were new.

        Duplicates are skipped by the storage layer. Any other failure rolls
        back the whole batch.
        """
        params = [_operation_params(op) for op in operations]
        if not params:
            return 0
        with self.db.lock, self.db.conn:
            cursor = self.db.conn.executemany(_INSERT_SQL, params)
        inserted = max(cursor.rowcount, 0)
        logger.debug("Ledger batch: %d new of %d", inserted, len(params))
        return inserted

    def replay(self, pool_address, position_token_id) -> List[Operation]:
        """All operations for one position in ascending block order"""
        with self.db.lock:
            rows = self.db.conn.execute('''
                SELECT * FROM lp_operations
                WHERE pool_address = ? AND position_token_id = ?
                ORDER BY block_number ASC, log_index ASC, id ASC
            ''', (pool_address, str(position_token_id))).fetchall()
        return [Operation.from_row(row) for row in rows]

    def count(self, pool_address=None, position_token_id=None) -> int:
        query = 'SELECT COUNT(*) FROM lp_operations'
        clauses, params = [], []
        if pool_address is not None:
            clauses.append('pool_address = ?')
            params.append(pool_address)
        if position_token_id is not None:
            clauses.append('position_token_id = ?')
            params.append(str(position_token_id))
        if clauses:
            query += ' WHERE ' + ' AND '.join(clauses)
        with self.db.lock:
            return self.db.conn.execute(query, params).fetchone()[0]
