#!/usr/bin/env python3
"""
Concentrated Liquidity Math Module for LP PnL Monitor
Exact integer versions of the V3 TickMath, SqrtPriceMath and fee accounting

Everything here works on Python ints with the same truncating division and
mod 2**256 wraparound the pool contracts use. Floats only appear in
normalize_amount, which feeds USD conversion.

Version: 1.0.0
"""

from .exceptions import InvalidRangeError, InvalidTickError

Q96 = 2 ** 96
Q128 = 2 ** 128
Q256 = 2 ** 256
MAX_UINT256 = Q256 - 1

MIN_TICK = -887272
MAX_TICK = 887272

# Per-bit multipliers for 1/sqrt(1.0001)^(2^i) in Q128, from the pool's TickMath
_TICK_RATIO_STEPS = (
    (0x2, 0xfff97272373d413259a46990580e213a),
    (0x4, 0xfff2e50f5f656932ef12357cf3c7fdcc),
    (0x8, 0xffe5caca7e10e4e61c3624eaa0941cd0),
    (0x10, 0xffcb9843d60f6159c9db58835c926644),
    (0x20, 0xff973b41fa98c081472e6896dfb254c0),
    (0x40, 0xff2ea16466c96a3843ec78b326b52861),
    (0x80, 0xfe5dee046a99a2a811c461f1969c3053),
    (0x100, 0xfcbe86c7900a88aedcffc83b479aa3a4),
    (0x200, 0xf987a7253ac413176f2b074cf7815e54),
    (0x400, 0xf3392b0822b70005940c7a398e4b70f3),
    (0x800, 0xe7159475a2c29b7443b29c7fa6e889d9),
    (0x1000, 0xd097f3bdfd2022b8845ad8f792aa5825),
    (0x2000, 0xa9f746462d870fdf8a65dc1f90e061e5),
    (0x4000, 0x70d869a156d2a1b890bb3df62baf32f7),
    (0x8000, 0x31be135f97d08fd981231505542fcfa6),
    (0x10000, 0x9aa508b5b7a84e1c677de54f3e99bc9),
    (0x20000, 0x5d6af8dedb81196699c329225ee604),
    (0x40000, 0x2216e584f5fa1ea926041bedfe98),
    (0x80000, 0x48a170391f7dc42444e8fa2),
)


def sub_mod_256(a, b):
    """a - b with uint256 wraparound"""
    return (a - b) % Q256


def get_sqrt_ratio_at_tick(tick):
    """sqrt(1.0001^tick) as a Q64.96, bit-identical to TickMath.getSqrtRatioAtTick"""
    abs_tick = abs(tick)
    if abs_tick > MAX_TICK:
        raise InvalidTickError(f"Tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")

    if abs_tick & 0x1:
        ratio = 0xfffcb933bd6fad37aa2d162d1a594001
    else:
        ratio = 0x100000000000000000000000000000000

    for bit, multiplier in _TICK_RATIO_STEPS:
        if abs_tick & bit:
            ratio = (ratio * multiplier) >> 128

    if tick > 0:
        ratio = MAX_UINT256 // ratio

    # Q128.128 -> Q64.96, rounding up
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def _mul_div_rounding_up(a, b, denominator):
    result = a * b // denominator
    if (a * b) % denominator:
        result += 1
    return result


def get_amount0_delta(sqrt_ratio_a, sqrt_ratio_b, liquidity, round_up=False):
    """Token0 between two sqrt prices: L * (sqrtB - sqrtA) / (sqrtA * sqrtB)"""
    if sqrt_ratio_a > sqrt_ratio_b:
        sqrt_ratio_a, sqrt_ratio_b = sqrt_ratio_b, sqrt_ratio_a
    if sqrt_ratio_a == 0:
        raise InvalidTickError("sqrt ratio must be positive")

    numerator1 = liquidity << 96
    numerator2 = sqrt_ratio_b - sqrt_ratio_a

    if round_up:
        inner = _mul_div_rounding_up(numerator1, numerator2, sqrt_ratio_b)
        return -(-inner // sqrt_ratio_a)
    return (numerator1 * numerator2 // sqrt_ratio_b) // sqrt_ratio_a


def get_amount1_delta(sqrt_ratio_a, sqrt_ratio_b, liquidity, round_up=False):
    """Token1 between two sqrt prices: L * (sqrtB - sqrtA) / 2^96"""
    if sqrt_ratio_a > sqrt_ratio_b:
        sqrt_ratio_a, sqrt_ratio_b = sqrt_ratio_b, sqrt_ratio_a

    if round_up:
        return _mul_div_rounding_up(liquidity, sqrt_ratio_b - sqrt_ratio_a, Q96)
    return liquidity * (sqrt_ratio_b - sqrt_ratio_a) // Q96


def token_amounts_for_liquidity(tick_current, tick_lower, tick_upper, sqrt_price_x96, liquidity):
    """Raw (amount0, amount1) held by `liquidity` over [tick_lower, tick_upper).

    Below the range the whole position is token0, above it the whole position
    is token1, and inside it is split at the current sqrt price. Rounds down.
    """
    if tick_lower >= tick_upper:
        raise InvalidRangeError(tick_lower, tick_upper)

    sqrt_lower = get_sqrt_ratio_at_tick(tick_lower)
    sqrt_upper = get_sqrt_ratio_at_tick(tick_upper)

    if tick_current < tick_lower:
        return get_amount0_delta(sqrt_lower, sqrt_upper, liquidity), 0
    if tick_current >= tick_upper:
        return 0, get_amount1_delta(sqrt_lower, sqrt_upper, liquidity)

    amount0 = get_amount0_delta(sqrt_price_x96, sqrt_upper, liquidity)
    amount1 = get_amount1_delta(sqrt_lower, sqrt_price_x96, liquidity)
    return amount0, amount1


def fee_growth_inside(outside_lower0, outside_lower1, outside_upper0, outside_upper1,
                      tick_lower, tick_upper, tick_current, global0, global1):
    """Per-liquidity fee growth accrued inside [tick_lower, tick_upper), both tokens"""
    if tick_current >= tick_lower:
        below0, below1 = outside_lower0, outside_lower1
    else:
        below0 = sub_mod_256(global0, outside_lower0)
        below1 = sub_mod_256(global1, outside_lower1)

    if tick_current < tick_upper:
        above0, above1 = outside_upper0, outside_upper1
    else:
        above0 = sub_mod_256(global0, outside_upper0)
        above1 = sub_mod_256(global1, outside_upper1)

    inside0 = sub_mod_256(sub_mod_256(global0, below0), above0)
    inside1 = sub_mod_256(sub_mod_256(global1, below1), above1)
    return inside0, inside1


def tokens_owed(inside_last0, inside_last1, liquidity, inside_now0, inside_now1, owed0=0, owed1=0):
    """Fees owed since the last checkpoint plus whatever the position already has owed"""
    accrued0 = sub_mod_256(inside_now0, inside_last0) * liquidity >> 128
    accrued1 = sub_mod_256(inside_now1, inside_last1) * liquidity >> 128
    return owed0 + accrued0, owed1 + accrued1


def normalize_amount(raw_amount, decimals):
    """Raw integer token amount -> human-readable float"""
    return raw_amount / (10 ** decimals)
