#!/usr/bin/env python3
"""
Event Ingestion Module for LP PnL Monitor
Chunked, bounded-concurrency log scanning for position mints and
IncreaseLiquidity / DecreaseLiquidity / Collect events

Work is fanned out from the calling thread onto a single bounded
ThreadPoolExecutor per phase (logs, timestamps, prices). Workers never
submit work themselves. The pool width is the RPC backpressure knob.

Version: 1.0.0
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple

from web3 import Web3

from .constants import (
    DEFAULT_CHUNK_SIZE, DEFAULT_MAX_WORKERS, EVENT_SIGNATURES, OP_COLLECT,
    OP_INCREASE, OPERATION_TYPES, ZERO_ADDRESS
)
from .exceptions import ChainReadError
from .models import ObservedEvent, Operation, Position
from .utils import (
    address_to_topic, block_time_to_date, data_words, int_to_topic, select_base_and_quote,
    timestamp_to_iso, to_hex_str, topic_to_address, topic_to_int
)
from .v3_math import normalize_amount

logger = logging.getLogger(__name__)

TOPICS = {name: Web3.to_hex(Web3.keccak(text=sig)) for name, sig in EVENT_SIGNATURES.items()}


class MintTransfer(NamedTuple):
    token_id: int
    owner: str
    tx_hash: str
    block_number: int
    log_index: int


def chunk_ranges(from_block, to_block, chunk_size=DEFAULT_CHUNK_SIZE):
    """Inclusive (start, end) ranges of at most chunk_size blocks covering [from_block, to_block]"""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    start = int(from_block)
    while start <= to_block:
        end = min(start + chunk_size - 1, int(to_block))
        yield start, end
        start = end + 1


def log_order(log):
    return int(log["blockNumber"]), int(log.get("logIndex", 0) or 0)


def _log_meta(log):
    return to_hex_str(log["transactionHash"]), int(log["blockNumber"]), int(log.get("logIndex", 0) or 0)


def decode_liquidity_event(log, op_type):
    """IncreaseLiquidity / DecreaseLiquidity: tokenId indexed; data = liquidity, amount0, amount1"""
    words = data_words(log["data"])
    tx_hash, block_number, log_index = _log_meta(log)
    return ObservedEvent(
        op_type=op_type,
        token_id=topic_to_int(log["topics"][1]),
        liquidity=int.from_bytes(words[0], "big"),
        amount0=int.from_bytes(words[1], "big"),
        amount1=int.from_bytes(words[2], "big"),
        tx_hash=tx_hash,
        block_number=block_number,
        log_index=log_index,
    )


def decode_collect_event(log):
    """Collect: tokenId indexed; data = recipient, amount0, amount1"""
    words = data_words(log["data"])
    tx_hash, block_number, log_index = _log_meta(log)
    return ObservedEvent(
        op_type=OP_COLLECT,
        token_id=topic_to_int(log["topics"][1]),
        liquidity=0,
        amount0=int.from_bytes(words[1], "big"),
        amount1=int.from_bytes(words[2], "big"),
        tx_hash=tx_hash,
        block_number=block_number,
        log_index=log_index,
    )


def decode_event(log, op_type):
    if op_type == OP_COLLECT:
        return decode_collect_event(log)
    return decode_liquidity_event(log, op_type)


def decode_transfer_event(log):
    """ERC721 Transfer(from, to, tokenId), all indexed"""
    tx_hash, block_number, log_index = _log_meta(log)
    return MintTransfer(
        token_id=topic_to_int(log["topics"][3]),
        owner=topic_to_address(log["topics"][2]),
        tx_hash=tx_hash,
        block_number=block_number,
        log_index=log_index,
    )


def find_pool_mint(receipt_logs, transfer_log_index, position_manager):
    """Locate the pool Mint emitted for an NFT mint.

    The position manager mints on the pool just before emitting Transfer, so
    the matching log is the last pool Mint owned by the position manager that
    precedes the Transfer in the receipt. Returns (pool, tick_lower, tick_upper).
    """
    manager_topic = address_to_topic(position_manager)
    match = None
    for log in receipt_logs:
        topics = log["topics"]
        if len(topics) < 4 or to_hex_str(topics[0]) != TOPICS["PoolMint"]:
            continue
        if to_hex_str(topics[1]) != manager_topic:
            continue
        if int(log.get("logIndex", 0) or 0) > transfer_log_index:
            continue
        match = log
    if match is None:
        raise ChainReadError("No pool Mint log found for position mint")
    return (
        Web3.to_checksum_address(match["address"]),
        topic_to_int(match["topics"][2], signed=True),
        topic_to_int(match["topics"][3], signed=True),
    )


class EventIngestor:
    """Turns chain logs for one DEX instance into positions and ledger operations"""

    def __init__(self, blockchain, db, ledger, price_manager, position_manager, pool_name,
                 chain="bsc", max_workers=DEFAULT_MAX_WORKERS, chunk_size=DEFAULT_CHUNK_SIZE):
        self.blockchain = blockchain
        self.db = db
        self.ledger = ledger
        self.price_manager = price_manager
        self.position_manager = Web3.to_checksum_address(position_manager)
        self.pool_name = pool_name
        self.chain = chain
        self.max_workers = max_workers
        self.chunk_size = chunk_size

    def _run_parallel(self, fn, items):
        """fn(item) for each item on the bounded pool; results keep input order.

        The first failure propagates once its result is reached.
        """
        items = list(items)
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            return list(executor.map(fn, items))

    def scan_logs(self, address, topics, from_block, to_block):
        """All matching logs in [from_block, to_block], queried chunk by chunk"""
        ranges = list(chunk_ranges(from_block, to_block, self.chunk_size))
        chunks = self._run_parallel(
            lambda r: self.blockchain.get_logs(address, topics, r[0], r[1]), ranges
        )
        return sorted((log for chunk in chunks for log in chunk), key=log_order)

    # Position discovery

    def discover_positions(self, owners, from_block, to_block):
        """Record positions minted to any monitored owner in the range"""
        if not owners:
            logger.warning("No owners configured for %s; skipping position discovery", self.pool_name)
            return []

        topics = [
            TOPICS["Transfer"],
            address_to_topic(ZERO_ADDRESS),
            [address_to_topic(owner) for owner in owners],
        ]
        logs = self.scan_logs(self.position_manager, topics, from_block, to_block)
        transfers = [decode_transfer_event(log) for log in logs]
        new_transfers = [t for t in transfers if not self.db.position_exists(self.pool_name, t.token_id)]
        logger.info("%s: %d mint transfer(s) in [%d, %d], %d new",
                    self.pool_name, len(transfers), from_block, to_block, len(new_transfers))

        positions = self._run_parallel(self.build_position, new_transfers)
        for position in positions:
            self.db.insert_position(position)
        return positions

    def build_position(self, transfer):
        receipt = self.blockchain.get_transaction_receipt(transfer.tx_hash)
        pool_address, tick_lower, tick_upper = find_pool_mint(
            receipt["logs"], transfer.log_index, self.position_manager
        )
        token0, token1, _fee = self.blockchain.get_pool_tokens(pool_address)
        base, quote, location = select_base_and_quote(token0, token1, self.chain)
        base_symbol = self.blockchain.get_token_info(base)["symbol"]
        quote_symbol = self.blockchain.get_token_info(quote)["symbol"]
        timestamp = self.blockchain.get_block_timestamp(transfer.block_number)

        return Position(
            pool_address=pool_address,
            position_token_id=transfer.token_id,
            pool_name=self.pool_name,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            base_token_address=base,
            quote_token_address=quote,
            base_token_location=location,
            creation_time=timestamp_to_iso(timestamp),
            creation_block=transfer.block_number,
            owner=transfer.owner,
            pair_name=f"{base_symbol}/{quote_symbol}",
        )

    # Operation history

    def fetch_position_events(self, positions, from_block, to_block):
        """{position.key: [ObservedEvent]} sorted by (block, log index).

        Each position is scanned from max(from_block, creation block). The
        three event streams are fetched independently, so ordering across
        types only exists after the merge sort here.
        """
        jobs = []
        for position in positions:
            start = max(int(from_block), int(position.creation_block))
            token_topic = int_to_topic(position.position_token_id)
            for op_type in OPERATION_TYPES:
                for chunk_start, chunk_end in chunk_ranges(start, to_block, self.chunk_size):
                    jobs.append((position.key, op_type, [TOPICS[op_type], token_topic], chunk_start, chunk_end))

        results = self._run_parallel(
            lambda job: self.blockchain.get_logs(self.position_manager, job[2], job[3], job[4]), jobs
        )

        events = {position.key: [] for position in positions}
        for (key, op_type, _topics, _start, _end), logs in zip(jobs, results):
            events[key].extend(decode_event(log, op_type) for log in logs)
        for key in events:
            events[key].sort(key=lambda e: (e.block_number, e.log_index))
        return events

    def find_reactivated(self, positions, from_block, to_block):
        """Closed positions with an IncreaseLiquidity at or after their end block.

        Only the IncreaseLiquidity stream is queried. Positions returned here
        get a full history scan through track_positions.
        """
        jobs = []
        for position in positions:
            closed_at = position.end_block_number or position.creation_block
            start = max(int(from_block), int(closed_at))
            token_topic = int_to_topic(position.position_token_id)
            for chunk_start, chunk_end in chunk_ranges(start, to_block, self.chunk_size):
                jobs.append((position, [TOPICS[OP_INCREASE], token_topic], chunk_start, chunk_end))

        results = self._run_parallel(
            lambda job: self.blockchain.get_logs(self.position_manager, job[1], job[2], job[3]), jobs
        )

        reopened = {}
        for (position, _topics, _start, _end), logs in zip(jobs, results):
            if logs:
                reopened.setdefault(position.key, position)
        for position in reopened.values():
            logger.info("Position #%s has new liquidity after closing at block %s",
                        position.position_token_id, position.end_block_number)
        return list(reopened.values())

    def build_operations(self, position, events, timestamps, prices):
        """ObservedEvents -> Operations with base/quote split by base_token_location"""
        base = position.base_token_address
        quote = position.quote_token_address
        base_decimals = self.blockchain.get_token_decimals(base)
        quote_decimals = self.blockchain.get_token_decimals(quote)

        operations = []
        for event in events:
            if position.base_token_location == "token0":
                base_raw, quote_raw = event.amount0, event.amount1
            else:
                base_raw, quote_raw = event.amount1, event.amount0
            timestamp = timestamps[event.block_number]
            date = block_time_to_date(timestamp)
            operations.append(Operation(
                pool_address=position.pool_address,
                position_token_id=position.position_token_id,
                op_type=event.op_type,
                tx_hash=event.tx_hash,
                block_number=event.block_number,
                op_time=timestamp_to_iso(timestamp),
                base_amount=normalize_amount(base_raw, base_decimals),
                quote_amount=normalize_amount(quote_raw, quote_decimals),
                base_price_usd=prices[(base.lower(), date)],
                quote_price_usd=prices[(quote.lower(), date)],
                liquidity_delta=event.liquidity,
                base_decimals=base_decimals,
                quote_decimals=quote_decimals,
                base_token_address=base,
                quote_token_address=quote,
                log_index=event.log_index,
            ))
        return operations

    def track_positions(self, positions, from_block, to_block):
        """Fetch, price and record every operation for `positions` in the range.

        Returns {position.key: new rows}. Any unretryable failure propagates
        before anything is written for the cycle.
        """
        positions = list(positions)
        if not positions:
            return {}

        events_by_position = self.fetch_position_events(positions, from_block, to_block)

        blocks = sorted({e.block_number for events in events_by_position.values() for e in events})
        timestamps = dict(zip(blocks, self._run_parallel(self.blockchain.get_block_timestamp, blocks)))

        price_keys = set()
        for position in positions:
            for event in events_by_position[position.key]:
                date = block_time_to_date(timestamps[event.block_number])
                price_keys.add((position.base_token_address.lower(), date))
                price_keys.add((position.quote_token_address.lower(), date))
        price_keys = sorted(price_keys)
        prices = dict(zip(price_keys, self._run_parallel(
            lambda key: self.price_manager.get_historical_price(key[0], key[1]), price_keys
        )))

        operations_by_position = {
            position.key: self.build_operations(position, events_by_position[position.key], timestamps, prices)
            for position in positions
        }

        inserted = {}
        for position in positions:
            operations = operations_by_position[position.key]
            inserted[position.key] = self.ledger.record_many(operations)
            if operations:
                logger.info("Position #%s: %d operation(s), %d new",
                            position.position_token_id, len(operations), inserted[position.key])
        return inserted
