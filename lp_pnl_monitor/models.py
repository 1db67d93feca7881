#!/usr/bin/env python3
"""
Data Model Module for LP PnL Monitor
Positions, ledger operations, chain state snapshots and strategy snapshots

Version: 1.0.0
"""

from dataclasses import asdict, dataclass, fields
from typing import List, Optional

from .exceptions import InvalidRangeError


@dataclass
class Position:
    """A monitored concentrated-liquidity position.

    Identity is (pool_address, position_token_id, pool_name). Base/quote
    assignment is decided once at creation and never re-derived.
    """
    pool_address: str
    position_token_id: int
    pool_name: str
    tick_lower: int
    tick_upper: int
    base_token_address: str
    quote_token_address: str
    base_token_location: str
    creation_time: str
    creation_block: int
    owner: str
    pair_name: str = ""
    is_active: bool = True
    end_block_number: Optional[int] = None

    def __post_init__(self):
        if self.tick_lower >= self.tick_upper:
            raise InvalidRangeError(self.tick_lower, self.tick_upper)
        if self.base_token_location not in ("token0", "token1"):
            raise ValueError(f"base_token_location must be token0 or token1, got {self.base_token_location!r}")

    @property
    def key(self):
        return (self.pool_address.lower(), int(self.position_token_id), self.pool_name)

    @classmethod
    def from_row(cls, row):
        return cls(
            pool_address=row["pool_address"],
            position_token_id=int(row["position_token_id"]),
            pool_name=row["pool_name"],
            tick_lower=int(row["tick_lower"]),
            tick_upper=int(row["tick_upper"]),
            base_token_address=row["base_token_address"],
            quote_token_address=row["quote_token_address"],
            base_token_location=row["base_token_location"],
            creation_time=row["position_create_time"],
            creation_block=int(row["block_number"]),
            owner=row["owner"] or "",
            pair_name=row["pair_name"] or "",
            is_active=bool(row["is_active"]),
            end_block_number=int(row["end_block_number"]) if row["end_block_number"] is not None else None,
        )


@dataclass
class Operation:
    """One immutable ledger entry for a liquidity-affecting event"""
    pool_address: str
    position_token_id: int
    op_type: str
    tx_hash: str
    block_number: int
    op_time: str
    base_amount: float
    quote_amount: float
    base_price_usd: Optional[float]
    quote_price_usd: Optional[float]
    liquidity_delta: int
    base_decimals: int
    quote_decimals: int
    base_token_address: str = ""
    quote_token_address: str = ""
    log_index: int = 0

    @classmethod
    def from_row(cls, row):
        return cls(
            pool_address=row["pool_address"],
            position_token_id=int(row["position_token_id"]),
            op_type=row["op_type"],
            tx_hash=row["tx_hash"],
            block_number=int(row["block_number"]),
            op_time=row["op_time"],
            base_amount=row["base_amount"],
            quote_amount=row["quote_amount"],
            base_price_usd=row["base_price_usd"],
            quote_price_usd=row["quote_price_usd"],
            liquidity_delta=int(row["liquidity"]),
            base_decimals=row["base_decimals"],
            quote_decimals=row["quote_decimals"],
            base_token_address=row["base_token_address"] or "",
            quote_token_address=row["quote_token_address"] or "",
            log_index=row["log_index"] or 0,
        )


@dataclass
class ObservedEvent:
    """A decoded position manager event before it becomes an Operation"""
    op_type: str
    token_id: int
    liquidity: int
    amount0: int
    amount1: int
    tx_hash: str
    block_number: int
    log_index: int


@dataclass
class TokenAmount:
    address: str
    amount: float


@dataclass
class PositionState:
    """positions(tokenId) as returned by the position manager"""
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    fee_growth_inside0_last_x128: int
    fee_growth_inside1_last_x128: int
    tokens_owed0: int
    tokens_owed1: int

    @classmethod
    def from_call(cls, result):
        return cls(
            token0=result[2],
            token1=result[3],
            fee=result[4],
            tick_lower=result[5],
            tick_upper=result[6],
            liquidity=result[7],
            fee_growth_inside0_last_x128=result[8],
            fee_growth_inside1_last_x128=result[9],
            tokens_owed0=result[10],
            tokens_owed1=result[11],
        )


@dataclass
class PoolSnapshot:
    """Pool state needed to value one position. Read fresh, never cached."""
    tick: int
    sqrt_price_x96: int
    fee_growth_global0_x128: int
    fee_growth_global1_x128: int
    fee_growth_outside_lower0_x128: int
    fee_growth_outside_lower1_x128: int
    fee_growth_outside_upper0_x128: int
    fee_growth_outside_upper1_x128: int
    block: Optional[int] = None


@dataclass
class PositionValue:
    amounts: List[TokenAmount]
    unclaimed_fees: List[TokenAmount]
    ok: bool = True


@dataclass
class StrategySnapshot:
    """Materialized PnL view of one position, recomputable from the ledger"""
    pool_address: str
    position_token_id: int
    pool_name: str
    query_time: str = ""
    pair_name: str = ""
    position_create_time: str = ""
    position_duration_h: float = 0.0
    base_price_usd: Optional[float] = None
    quote_price_usd: Optional[float] = None
    base_token_address: str = ""
    quote_token_address: str = ""
    base_token_location: str = "token0"

    total_add_base_amount: float = 0.0
    total_add_quote_amount: float = 0.0
    total_add_base_value_usd: float = 0.0
    total_add_quote_value_usd: float = 0.0
    total_add_value_usd: float = 0.0

    total_remove_base_amount: float = 0.0
    total_remove_quote_amount: float = 0.0
    total_remove_base_value_usd: float = 0.0
    total_remove_quote_value_usd: float = 0.0
    total_remove_value_usd: float = 0.0

    total_fee_claim_base_amount: float = 0.0
    total_fee_claim_quote_amount: float = 0.0
    total_fee_claim_base_value_usd: float = 0.0
    total_fee_claim_quote_value_usd: float = 0.0
    total_fee_claim_value_usd: float = 0.0

    unclaimed_fee_base_amount: float = 0.0
    unclaimed_fee_quote_amount: float = 0.0
    unclaimed_fee_base_value_usd: float = 0.0
    unclaimed_fee_quote_value_usd: float = 0.0
    unclaimed_fee_value_usd: float = 0.0

    current_base_amount: float = 0.0
    current_quote_amount: float = 0.0
    current_position_value_usd: float = 0.0

    pnl_total_usd: float = 0.0
    pnl_total_percentage: float = 0.0

    is_active: bool = True
    block_number: int = 0
    end_block_number: Optional[int] = None
    owner: str = ""

    def to_row(self):
        row = asdict(self)
        row["position_token_id"] = str(self.position_token_id)
        row["is_active"] = 1 if self.is_active else 0
        return row

    @classmethod
    def column_names(cls):
        return [f.name for f in fields(cls)]

    @classmethod
    def from_row(cls, row):
        names = set(row.keys())
        values = {name: row[name] for name in cls.column_names() if name in names}
        values["position_token_id"] = int(values["position_token_id"])
        values["is_active"] = bool(values.get("is_active"))
        return cls(**values)
