#!/usr/bin/env python3
"""
Utility Functions Module for LP PnL Monitor
Common helper functions used across modules: caches, base/quote selection,
date handling and raw log field decoding

Version: 1.0.0
"""

import threading
from datetime import datetime, timezone

from web3 import Web3

from .constants import DEX_VARIANTS, QUOTE_TOKEN_PRIORITY
from .exceptions import UnsupportedDexError

_MISSING = object()


class KeyValueCache:
    """Process-scoped cache with insert-if-absent semantics.

    Keys are immutable facts (token address, address + date) so entries are
    never invalidated. The first value stored for a key wins. With max_size
    set, the oldest entries are evicted first.
    """

    def __init__(self, name="cache", max_size=None):
        self.name = name
        self.max_size = max_size
        self._data = {}
        self._lock = threading.Lock()

    def get(self, key, default=None):
        return self._data.get(key, default)

    def insert_if_absent(self, key, value):
        """Store value unless key is present; return whichever value is cached"""
        with self._lock:
            if key in self._data:
                return self._data[key]
            self._data[key] = value
            if self.max_size is not None:
                while len(self._data) > self.max_size:
                    self._data.pop(next(iter(self._data)))
            return value

    def get_or_load(self, key, loader):
        """Return the cached value, calling loader() outside the lock on a miss"""
        cached = self._data.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        return self.insert_if_absent(key, loader())

    def __contains__(self, key):
        return key in self._data

    def __len__(self):
        return len(self._data)


def get_dex_variant(dex_type):
    """Return the DEX variant dict or fail fast"""
    variant = DEX_VARIANTS.get((dex_type or "").lower())
    if variant is None:
        raise UnsupportedDexError(dex_type)
    return variant


def select_base_and_quote(token0, token1, chain="bsc"):
    """Pick base/quote for a pair using the chain's quote priority list.

    Returns (base_address, quote_address, base_token_location) where
    base_token_location is "token0" or "token1".
    """
    priority = [addr.lower() for addr in QUOTE_TOKEN_PRIORITY.get(chain, [])]
    rank0 = priority.index(token0.lower()) if token0.lower() in priority else None
    rank1 = priority.index(token1.lower()) if token1.lower() in priority else None

    if rank0 is not None and rank1 is not None:
        # Lower index = higher priority = quote
        if rank0 < rank1:
            return token1, token0, "token1"
        return token0, token1, "token0"
    if rank0 is not None:
        return token1, token0, "token1"
    # token1 is quote, or neither is known and token0 stays base
    return token0, token1, "token0"


def block_time_to_date(timestamp):
    """Unix timestamp -> dd-mm-yyyy (UTC), the format the history price API expects"""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%d-%m-%Y")


def timestamp_to_iso(timestamp):
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).isoformat()


def iso_to_timestamp(value):
    return datetime.fromisoformat(value).timestamp()


def to_bytes(value):
    """HexBytes, bytes or 0x-prefixed hex string -> bytes"""
    if isinstance(value, str):
        return Web3.to_bytes(hexstr=value)
    return bytes(value)


def to_hex_str(value):
    """Normalize a hash-like value to a lowercase 0x-prefixed string"""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value).lower()


def address_to_topic(address):
    """Left-pad an address to a 32-byte topic"""
    return "0x" + "0" * 24 + address.lower()[2:]


def int_to_topic(value):
    return "0x" + int(value).to_bytes(32, "big").hex()


def topic_to_address(topic):
    return Web3.to_checksum_address("0x" + to_bytes(topic)[-20:].hex())


def topic_to_int(topic, signed=False):
    """Indexed int topic -> int (int24 ticks are sign-extended to 32 bytes)"""
    return int.from_bytes(to_bytes(topic), "big", signed=signed)


def data_words(data):
    """Split ABI-encoded log data into 32-byte words"""
    raw = to_bytes(data)
    return [raw[i:i + 32] for i in range(0, len(raw), 32)]
