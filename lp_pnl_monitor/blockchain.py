#!/usr/bin/env python3
"""
Blockchain Interaction Module for LP PnL Monitor
Handles Web3 connections, log queries, historical contract reads and block timestamps

Every RPC goes through the RPC rate limiter and then the retry policy, so a
call either returns data or raises RetryExhaustedError.

Version: 1.0.0
"""

import logging
import threading
import time
from collections import deque

from web3 import Web3

from .constants import (
    POOL_ABI, POSITION_MANAGER_ABI, TIMESTAMP_CACHE_SIZE, TIMESTAMP_CONFIRMATIONS, TOKEN_ABI
)
from .exceptions import ChainReadError
from .models import PoolSnapshot, PositionState
from .retry import RetryPolicy
from .utils import KeyValueCache

logger = logging.getLogger(__name__)


class BlockchainManager:
    """Chain reader: logs, contract state pinned to a block, block timestamps"""

    def __init__(self, rpc_url, retry_policy=None, timeout=30, rpm_limit=0,
                 token_cache=None, pool_cache=None, w3=None):
        self.rpc_url = rpc_url
        self.retry = retry_policy or RetryPolicy()

        # Process-lifetime caches for token metadata and pool tokens; block timestamps are bounded
        self.token_cache = token_cache if token_cache is not None else KeyValueCache("tokens")
        self.pool_cache = pool_cache if pool_cache is not None else KeyValueCache("pools")
        self.timestamp_cache = KeyValueCache("block_timestamps", max_size=TIMESTAMP_CACHE_SIZE)
        self.confirmations = TIMESTAMP_CONFIRMATIONS
        self._head_seen = None
        self._contracts = KeyValueCache("contracts")

        # Connect to blockchain
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        if not self.w3.is_connected():
            raise ChainReadError(f"Failed to connect to RPC at {rpc_url}")
        logger.info("Connected to RPC %s", rpc_url)

        # Global RPC rate limiter (requests/minute); 0 disables it
        self._rpm_limit = rpm_limit
        self._rpc_call_times = deque()
        self._rpc_lock = threading.Lock()

    def _throttle_rpc(self):
        """Simple token-bucket-like limiter to keep under rpm limit."""
        if self._rpm_limit <= 0:
            return
        with self._rpc_lock:
            now = time.time()
            window = 60.0
            # drop old
            while self._rpc_call_times and (now - self._rpc_call_times[0]) > window:
                self._rpc_call_times.popleft()
            if len(self._rpc_call_times) >= self._rpm_limit:
                sleep_for = window - (now - self._rpc_call_times[0]) + 0.05
                if sleep_for > 0:
                    time.sleep(sleep_for)
            self._rpc_call_times.append(time.time())

    def _rl_call(self, fn, *args, **kwargs):
        self._throttle_rpc()
        return fn(*args, **kwargs)

    def _call(self, description, fn, *args, **kwargs):
        return self.retry.call(self._rl_call, fn, *args, description=description, **kwargs)

    def _contract(self, address, abi, kind):
        address = Web3.to_checksum_address(address)
        return self._contracts.get_or_load(
            (kind, address), lambda: self.w3.eth.contract(address=address, abi=abi)
        )

    # Blocks and logs

    def get_block_number(self):
        head = int(self._call("eth_blockNumber", lambda: self.w3.eth.block_number))
        self._head_seen = max(head, self._head_seen or 0)
        return head

    def get_block_timestamp(self, block_number):
        """Block timestamp (unix seconds). Only confirmed blocks are cached."""
        block_number = int(block_number)
        cached = self.timestamp_cache.get(block_number)
        if cached is not None:
            return cached
        block = self._call(f"get_block({block_number})", self.w3.eth.get_block, block_number)
        timestamp = int(block["timestamp"])
        if self._head_seen is not None and block_number > self._head_seen - self.confirmations:
            return timestamp
        return self.timestamp_cache.insert_if_absent(block_number, timestamp)

    def get_logs(self, address, topics, from_block, to_block):
        """eth_getLogs over an inclusive block range"""
        params = {
            "fromBlock": int(from_block),
            "toBlock": int(to_block),
            "address": Web3.to_checksum_address(address),
            "topics": topics,
        }
        return self._call(f"get_logs({from_block}-{to_block})", self.w3.eth.get_logs, params)

    def get_transaction_receipt(self, tx_hash):
        return self._call(f"receipt({tx_hash})", self.w3.eth.get_transaction_receipt, tx_hash)

    # Token and pool metadata

    def get_token_info(self, token_address):
        """{'decimals', 'symbol'} for an ERC20, cached for the process lifetime"""
        token_address = Web3.to_checksum_address(token_address)
        cached = self.token_cache.get(token_address)
        if cached is not None:
            return cached

        token = self._contract(token_address, TOKEN_ABI, "token")
        decimals = self._call(f"decimals({token_address})", token.functions.decimals().call)
        try:
            symbol = self._call(f"symbol({token_address})", token.functions.symbol().call)
        except Exception as e:
            # Some tokens return bytes32 symbols; the address suffix is good enough for pair names
            logger.debug("symbol() failed for %s: %s", token_address, e)
            symbol = f"TOKEN_{token_address[-6:]}"

        info = {"decimals": int(decimals), "symbol": symbol}
        return self.token_cache.insert_if_absent(token_address, info)

    def get_token_decimals(self, token_address):
        return self.get_token_info(token_address)["decimals"]

    def get_pool_tokens(self, pool_address):
        """(token0, token1, fee) for a pool; immutable so cached"""
        pool_address = Web3.to_checksum_address(pool_address)
        cached = self.pool_cache.get(pool_address)
        if cached is not None:
            return cached

        pool = self._contract(pool_address, POOL_ABI, "pool")
        token0 = self._call(f"token0({pool_address})", pool.functions.token0().call)
        token1 = self._call(f"token1({pool_address})", pool.functions.token1().call)
        fee = self._call(f"fee({pool_address})", pool.functions.fee().call)
        info = (Web3.to_checksum_address(token0), Web3.to_checksum_address(token1), int(fee))
        return self.pool_cache.insert_if_absent(pool_address, info)

    # Position and pool state

    def get_position_state(self, position_manager_address, token_id, block="latest"):
        """positions(tokenId) on the position manager, pinned to `block`"""
        pm = self._contract(position_manager_address, POSITION_MANAGER_ABI, "position_manager")
        result = self._call(
            f"positions({token_id})@{block}",
            pm.functions.positions(int(token_id)).call,
            block_identifier=block,
        )
        return PositionState.from_call(result)

    def get_pool_snapshot(self, pool_address, tick_lower, tick_upper, block="latest", require_initialized=True):
        """slot0, global fee growth and both boundary ticks, all read at the same block"""
        pool = self._contract(pool_address, POOL_ABI, "pool")
        slot0 = self._call(f"slot0({pool_address})@{block}",
                           pool.functions.slot0().call, block_identifier=block)
        global0 = self._call(f"feeGrowthGlobal0X128({pool_address})@{block}",
                             pool.functions.feeGrowthGlobal0X128().call, block_identifier=block)
        global1 = self._call(f"feeGrowthGlobal1X128({pool_address})@{block}",
                             pool.functions.feeGrowthGlobal1X128().call, block_identifier=block)
        lower = self._call(f"ticks({tick_lower})@{block}",
                           pool.functions.ticks(int(tick_lower)).call, block_identifier=block)
        upper = self._call(f"ticks({tick_upper})@{block}",
                           pool.functions.ticks(int(tick_upper)).call, block_identifier=block)

        if require_initialized and not (lower[7] and upper[7]):
            raise ChainReadError(
                f"Tick data missing for {pool_address} [{tick_lower}, {tick_upper}] at {block}"
            )

        return PoolSnapshot(
            tick=int(slot0[1]),
            sqrt_price_x96=int(slot0[0]),
            fee_growth_global0_x128=int(global0),
            fee_growth_global1_x128=int(global1),
            fee_growth_outside_lower0_x128=int(lower[2]),
            fee_growth_outside_lower1_x128=int(lower[3]),
            fee_growth_outside_upper0_x128=int(upper[2]),
            fee_growth_outside_upper1_x128=int(upper[3]),
            block=block if isinstance(block, int) else None,
        )
