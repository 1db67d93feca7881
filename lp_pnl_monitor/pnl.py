#!/usr/bin/env python3
"""
PnL Aggregation Module for LP PnL Monitor
Replays a position's ledger and combines it with live valuation into a
StrategySnapshot

Version: 1.0.0
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .constants import DEFAULT_MAX_WORKERS, OP_COLLECT, OP_DECREASE, OP_INCREASE
from .exceptions import RetryExhaustedError
from .models import StrategySnapshot
from .utils import iso_to_timestamp

logger = logging.getLogger(__name__)


def usd_value(amount, price):
    """amount * price, or 0 when the price is unavailable.

    Only live prices can be missing. Ledger operations always carry a
    historical price because ingestion fails the cycle without one.
    """
    if price is None:
        return 0.0
    return amount * price


@dataclass
class Totals:
    base_amount: float = 0.0
    quote_amount: float = 0.0
    base_value_usd: float = 0.0
    quote_value_usd: float = 0.0

    @property
    def value_usd(self):
        return self.base_value_usd + self.quote_value_usd

    def add(self, op):
        self.base_amount += op.base_amount
        self.quote_amount += op.quote_amount
        self.base_value_usd += usd_value(op.base_amount, op.base_price_usd)
        self.quote_value_usd += usd_value(op.quote_amount, op.quote_price_usd)


@dataclass
class LedgerState:
    current_liquidity: int = 0
    added: Totals = field(default_factory=Totals)
    removed: Totals = field(default_factory=Totals)
    fee_claimed: Totals = field(default_factory=Totals)
    is_active: bool = True
    end_block_number: Optional[int] = None


def replay_ledger(operations):
    """Fold operations (ascending block order) into a LedgerState.

    Amounts on Operation rows are already split into base/quote, so the
    replay is independent of token ordering. A freshly minted position with
    no operations yet counts as active.
    """
    state = LedgerState()
    for op in sorted(operations, key=lambda o: (o.block_number, o.log_index)):
        delta = abs(int(op.liquidity_delta))
        if op.op_type == OP_INCREASE:
            state.current_liquidity += delta
            state.added.add(op)
            if state.current_liquidity > 0:
                state.is_active = True
                state.end_block_number = None
        elif op.op_type == OP_DECREASE:
            state.current_liquidity -= delta
            state.removed.add(op)
            if state.current_liquidity < 0:
                logger.warning("Liquidity went negative (%d) for position #%s at block %d",
                               state.current_liquidity, op.position_token_id, op.block_number)
            if state.current_liquidity <= 0:
                state.is_active = False
                state.end_block_number = op.block_number
        elif op.op_type == OP_COLLECT:
            state.fee_claimed.add(op)
        else:
            raise ValueError(f"Unknown operation type: {op.op_type}")
    return state


def split_base_quote(position, token_amounts):
    """Map [(token0, amt), (token1, amt)] onto (base_amount, quote_amount)"""
    base_amount = quote_amount = 0.0
    for token in token_amounts:
        if not token.address:
            continue
        if token.address.lower() == position.base_token_address.lower():
            base_amount = token.amount
        elif token.address.lower() == position.quote_token_address.lower():
            quote_amount = token.amount
    return base_amount, quote_amount


def build_snapshot(position, state, position_value, base_price, quote_price,
                   duration_h, query_time):
    """Pure combination of ledger state, live valuation and live prices"""
    current_base, current_quote = split_base_quote(position, position_value.amounts)
    fee_base, fee_quote = split_base_quote(position, position_value.unclaimed_fees)

    current_value = usd_value(current_base, base_price) + usd_value(current_quote, quote_price)
    fee_base_value = usd_value(fee_base, base_price)
    fee_quote_value = usd_value(fee_quote, quote_price)
    unclaimed_value = fee_base_value + fee_quote_value

    total_add_value = state.added.value_usd
    pnl = unclaimed_value + state.fee_claimed.value_usd + current_value - total_add_value
    pnl_pct = pnl / total_add_value * 100 if total_add_value else 0.0

    return StrategySnapshot(
        pool_address=position.pool_address,
        position_token_id=position.position_token_id,
        pool_name=position.pool_name,
        query_time=query_time,
        pair_name=position.pair_name,
        position_create_time=position.creation_time,
        position_duration_h=duration_h,
        base_price_usd=base_price,
        quote_price_usd=quote_price,
        base_token_address=position.base_token_address,
        quote_token_address=position.quote_token_address,
        base_token_location=position.base_token_location,

        total_add_base_amount=state.added.base_amount,
        total_add_quote_amount=state.added.quote_amount,
        total_add_base_value_usd=state.added.base_value_usd,
        total_add_quote_value_usd=state.added.quote_value_usd,
        total_add_value_usd=total_add_value,

        total_remove_base_amount=state.removed.base_amount,
        total_remove_quote_amount=state.removed.quote_amount,
        total_remove_base_value_usd=state.removed.base_value_usd,
        total_remove_quote_value_usd=state.removed.quote_value_usd,
        total_remove_value_usd=state.removed.value_usd,

        total_fee_claim_base_amount=state.fee_claimed.base_amount,
        total_fee_claim_quote_amount=state.fee_claimed.quote_amount,
        total_fee_claim_base_value_usd=state.fee_claimed.base_value_usd,
        total_fee_claim_quote_value_usd=state.fee_claimed.quote_value_usd,
        total_fee_claim_value_usd=state.fee_claimed.value_usd,

        unclaimed_fee_base_amount=fee_base,
        unclaimed_fee_quote_amount=fee_quote,
        unclaimed_fee_base_value_usd=fee_base_value,
        unclaimed_fee_quote_value_usd=fee_quote_value,
        unclaimed_fee_value_usd=unclaimed_value,

        current_base_amount=current_base,
        current_quote_amount=current_quote,
        current_position_value_usd=current_value,

        pnl_total_usd=pnl,
        pnl_total_percentage=pnl_pct,

        is_active=state.is_active,
        block_number=position.creation_block,
        end_block_number=state.end_block_number,
        owner=position.owner,
    )


class PnLAggregator:
    """Ledger replay + live valuation -> upserted StrategySnapshot"""

    def __init__(self, db, ledger, valuation, price_manager, blockchain, position_manager,
                 clock=time.time):
        self.db = db
        self.ledger = ledger
        self.valuation = valuation
        self.price_manager = price_manager
        self.blockchain = blockchain
        self.position_manager = position_manager
        self.clock = clock

    def live_price(self, token_address):
        """Current USD price, or None when the oracle cannot provide one"""
        try:
            return self.price_manager.get_current_price(token_address)
        except RetryExhaustedError as e:
            logger.warning("No live price for %s, valuing at 0: %s", token_address, e)
            return None

    def duration_hours(self, position, state):
        created = iso_to_timestamp(position.creation_time)
        if state.is_active or state.end_block_number is None:
            end = self.clock()
        else:
            end = self.blockchain.get_block_timestamp(state.end_block_number)
        return max(end - created, 0) / 3600

    def aggregate(self, position, latest_block):
        """Recompute and upsert the snapshot for one position"""
        state = replay_ledger(self.ledger.replay(position.pool_address, position.position_token_id))
        position_value = self.valuation.value_position(
            self.position_manager, position.position_token_id, position.pool_address, latest_block
        )
        if not position_value.ok:
            logger.info("Position #%s: snapshot uses zero current value and unclaimed fees at block %s",
                        position.position_token_id, latest_block)
        base_price = self.live_price(position.base_token_address)
        quote_price = self.live_price(position.quote_token_address)

        snapshot = build_snapshot(
            position, state, position_value, base_price, quote_price,
            duration_h=self.duration_hours(position, state),
            query_time=datetime.fromtimestamp(self.clock(), tz=timezone.utc).isoformat(),
        )
        self.db.upsert_snapshot(snapshot)
        if not snapshot.is_active:
            logger.info("Position #%s closed at block %s", position.position_token_id,
                        snapshot.end_block_number)
        return snapshot

    def aggregate_all(self, positions, latest_block, max_workers=DEFAULT_MAX_WORKERS):
        """Aggregate positions in parallel; the first failure propagates after the rest finish"""
        positions = list(positions)
        if not positions:
            return []
        snapshots, errors = [], []
        with ThreadPoolExecutor(max_workers=min(max_workers, len(positions))) as executor:
            futures = {executor.submit(self.aggregate, p, latest_block): p for p in positions}
            for future in as_completed(futures):
                try:
                    snapshots.append(future.result())
                except Exception as e:
                    logger.error("Aggregation failed for position #%s: %s",
                                 futures[future].position_token_id, e)
                    errors.append(e)
        if errors:
            raise errors[0]
        return snapshots
