"""
In-memory collaborators for the test suite: a chain reader that serves
logs/receipts/state from dicts, a fixed price oracle, and log builders.
"""

import threading
import time

from web3 import Web3

from lp_pnl_monitor.constants import OP_COLLECT, ZERO_ADDRESS
from lp_pnl_monitor.event_ingestor import TOPICS
from lp_pnl_monitor.models import Operation
from lp_pnl_monitor.utils import address_to_topic, int_to_topic, to_hex_str

USDT = "0x55d398326f99059fF775485246999027B3197955"
WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"
CAKE = Web3.to_checksum_address("0x0e09fabb73bd3ade0a17ecc321fd13a19e81ce82")
POOL = Web3.to_checksum_address("0x36696169c63e42cd08ce11f5deebbcebae652050")
POSITION_MANAGER = Web3.to_checksum_address("0x46a15b0b27311cedf172ab29e4f4766fbe7f4364")
OWNER = "0x1111111111111111111111111111111111111111"
GENESIS_TS = 1_700_000_000


def signed_topic(value):
    return "0x" + int(value).to_bytes(32, "big", signed=True).hex()


def tx(n):
    return "0x" + format(n, "064x")


def make_log(address, topics, block, log_index=0, data=b"", tx_hash=None):
    return {
        "address": address,
        "topics": topics,
        "data": data,
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": tx_hash or tx(block * 1000 + log_index),
    }


def words(*values):
    return b"".join(int(v).to_bytes(32, "big") for v in values)


def liquidity_log(op_type, token_id, liquidity, amount0, amount1, block, log_index=0, tx_hash=None):
    topics = [TOPICS[op_type], int_to_topic(token_id)]
    if op_type == OP_COLLECT:
        data = words(int(OWNER, 16), amount0, amount1)
    else:
        data = words(liquidity, amount0, amount1)
    return make_log(POSITION_MANAGER, topics, block, log_index, data, tx_hash)


def mint_transfer_log(token_id, owner, block, log_index, tx_hash):
    topics = [TOPICS["Transfer"], address_to_topic(ZERO_ADDRESS), address_to_topic(owner), int_to_topic(token_id)]
    return make_log(POSITION_MANAGER, topics, block, log_index, b"", tx_hash)


def pool_mint_log(pool, tick_lower, tick_upper, block, log_index, tx_hash, owner=POSITION_MANAGER):
    topics = [TOPICS["PoolMint"], address_to_topic(owner), signed_topic(tick_lower), signed_topic(tick_upper)]
    return make_log(pool, topics, block, log_index, words(0, 0, 0, 0), tx_hash)


def _topics_match(log_topics, wanted):
    for i, expected in enumerate(wanted):
        if expected is None:
            continue
        if i >= len(log_topics):
            return False
        actual = to_hex_str(log_topics[i])
        if isinstance(expected, list):
            if actual not in [e.lower() for e in expected]:
                return False
        elif actual != expected.lower():
            return False
    return True


class FakeChain:
    """Chain reader backed by plain dicts; records get_logs calls"""

    def __init__(self, head=0, delay=0.0):
        self.head = head
        self.delay = delay
        self.logs = []
        self.receipts = {}
        self.pool_tokens = {}
        self.tokens = {}
        self.timestamps = {}
        self.position_states = {}
        self.pool_snapshots = {}
        self.get_logs_calls = []
        self.fail_ranges = set()
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def get_block_number(self):
        return self.head

    def get_logs(self, address, topics, from_block, to_block):
        with self._lock:
            self.get_logs_calls.append((address, from_block, to_block))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if (from_block, to_block) in self.fail_ranges:
                raise RuntimeError(f"RPC failure for {from_block}-{to_block}")
            return [
                log for log in self.logs
                if log["address"].lower() == address.lower()
                and from_block <= log["blockNumber"] <= to_block
                and _topics_match(log["topics"], topics)
            ]
        finally:
            with self._lock:
                self.in_flight -= 1

    def get_block_timestamp(self, block_number):
        return self.timestamps.get(block_number, GENESIS_TS + block_number * 3)

    def get_transaction_receipt(self, tx_hash):
        return self.receipts[tx_hash]

    def get_pool_tokens(self, pool_address):
        return self.pool_tokens[pool_address]

    def get_token_info(self, token_address):
        return self.tokens[token_address.lower()]

    def get_token_decimals(self, token_address):
        return self.get_token_info(token_address)["decimals"]

    def get_position_state(self, position_manager, token_id, block="latest"):
        return self.position_states[int(token_id)]

    def get_pool_snapshot(self, pool_address, tick_lower, tick_upper, block="latest", require_initialized=True):
        return self.pool_snapshots[pool_address]


class FixedPrices:
    """Price oracle returning a constant price (or None = unavailable) per token"""

    def __init__(self, prices=None, default=1.0):
        self.prices = {k.lower(): v for k, v in (prices or {}).items()}
        self.default = default
        self.historical_calls = []

    def get_historical_price(self, token_address, date):
        self.historical_calls.append((token_address.lower(), date))
        return self.prices.get(token_address.lower(), self.default)

    def get_current_price(self, token_address):
        return self.prices.get(token_address.lower(), self.default)

    def clear_current_prices(self):
        pass


def make_operation(op_type, block, base_amount=0.0, quote_amount=0.0, liquidity=0,
                   base_price=1.0, quote_price=1.0, token_id=1, pool=POOL, tx_hash=None, log_index=0):
    return Operation(
        pool_address=pool,
        position_token_id=token_id,
        op_type=op_type,
        tx_hash=tx_hash or tx(block * 1000 + log_index),
        block_number=block,
        op_time="2024-01-01T00:00:00+00:00",
        base_amount=base_amount,
        quote_amount=quote_amount,
        base_price_usd=base_price,
        quote_price_usd=quote_price,
        liquidity_delta=liquidity,
        base_decimals=18,
        quote_decimals=18,
        base_token_address=WBNB,
        quote_token_address=USDT,
        log_index=log_index,
    )


def add_minted_position(chain, token_id, owner, block, tick_lower=-600, tick_upper=600, pool=POOL):
    """NFT mint Transfer plus a receipt holding the matching pool Mint"""
    tx_hash = tx(token_id)
    transfer = mint_transfer_log(token_id, owner, block, 2, tx_hash)
    chain.logs.append(transfer)
    chain.receipts[tx_hash] = {"logs": [pool_mint_log(pool, tick_lower, tick_upper, block, 1, tx_hash), transfer]}
    return tx_hash
