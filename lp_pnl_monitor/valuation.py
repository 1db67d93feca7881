#!/usr/bin/env python3
"""
Position Valuation Module for LP PnL Monitor
Current token amounts and unclaimed fees for a position at a given block

Version: 1.0.0
"""

import logging

from .exceptions import ChainReadError, RetryExhaustedError
from .models import PositionValue, TokenAmount
from .utils import KeyValueCache
from .v3_math import fee_growth_inside, normalize_amount, token_amounts_for_liquidity, tokens_owed

logger = logging.getLogger(__name__)


def zero_placeholder():
    return [TokenAmount("", 0.0), TokenAmount("", 0.0)]


class PositionValuation:
    """Values positions from on-chain state.

    decimals_cache is a KeyValueCache of token address -> decimals shared
    for the process lifetime.
    """

    def __init__(self, blockchain, decimals_cache=None):
        self.blockchain = blockchain
        self.decimals_cache = decimals_cache if decimals_cache is not None else KeyValueCache("decimals")

    def get_decimals(self, token_address):
        return self.decimals_cache.get_or_load(
            token_address.lower(), lambda: self.blockchain.get_token_decimals(token_address)
        )

    def current_amounts(self, position, pool):
        """[(token0, amount0), (token1, amount1)] in human units"""
        amount0, amount1 = token_amounts_for_liquidity(
            pool.tick, position.tick_lower, position.tick_upper,
            pool.sqrt_price_x96, position.liquidity,
        )
        return self._normalize(position, amount0, amount1)

    def unclaimed_fees(self, position, pool):
        """Fees accrued since the last poke plus tokensOwed already on chain"""
        inside0, inside1 = fee_growth_inside(
            pool.fee_growth_outside_lower0_x128, pool.fee_growth_outside_lower1_x128,
            pool.fee_growth_outside_upper0_x128, pool.fee_growth_outside_upper1_x128,
            position.tick_lower, position.tick_upper, pool.tick,
            pool.fee_growth_global0_x128, pool.fee_growth_global1_x128,
        )
        owed0, owed1 = tokens_owed(
            position.fee_growth_inside0_last_x128, position.fee_growth_inside1_last_x128,
            position.liquidity, inside0, inside1,
            position.tokens_owed0, position.tokens_owed1,
        )
        return self._normalize(position, owed0, owed1)

    def _normalize(self, position, raw0, raw1):
        return [
            TokenAmount(position.token0, normalize_amount(raw0, self.get_decimals(position.token0))),
            TokenAmount(position.token1, normalize_amount(raw1, self.get_decimals(position.token1))),
        ]

    def value_position(self, position_manager_address, token_id, pool_address, block="latest"):
        """Read position + pool at `block` and value it.

        Unreadable state yields zero placeholders and a warning so the other
        positions in the cycle still get aggregated.
        """
        try:
            state = self.blockchain.get_position_state(position_manager_address, token_id, block)
            pool = self.blockchain.get_pool_snapshot(
                pool_address, state.tick_lower, state.tick_upper, block,
                require_initialized=state.liquidity > 0,
            )
            return PositionValue(
                amounts=self.current_amounts(state, pool),
                unclaimed_fees=self.unclaimed_fees(state, pool),
            )
        except (ChainReadError, RetryExhaustedError) as e:
            logger.warning("Valuation failed for position #%s in %s at block %s: %s",
                           token_id, pool_address, block, e)
            return PositionValue(amounts=zero_placeholder(), unclaimed_fees=zero_placeholder(), ok=False)
