#!/usr/bin/env python3
"""
Position Monitoring Module for LP PnL Monitor
Runs scan cycles per DEX instance: discover -> track history -> aggregate -> checkpoint

Version: 1.0.0
"""

import logging
import time

from .blockchain import BlockchainManager
from .config import check_unique_instances
from .constants import CHECKPOINT_KEY_PREFIX, DEFAULT_START_BLOCK
from .event_ingestor import EventIngestor
from .ledger import OperationLedger
from .pnl import PnLAggregator
from .position_database import PositionDatabase
from .price_utils import PriceManager
from .retry import RetryPolicy
from .utils import KeyValueCache
from .valuation import PositionValuation

logger = logging.getLogger(__name__)


def checkpoint_key(chain, dex_type):
    return f"{CHECKPOINT_KEY_PREFIX}_{chain}_{dex_type}"


class InstanceContext:
    """Collaborators wired for one DEX instance"""

    def __init__(self, instance, blockchain, db, ledger, price_manager, valuation, scan_config):
        self.instance = instance
        self.blockchain = blockchain
        self.ingestor = EventIngestor(
            blockchain, db, ledger, price_manager,
            position_manager=instance["position_manager"],
            pool_name=instance["pool_name"],
            chain=instance["chain"],
            max_workers=scan_config["max_workers"],
            chunk_size=scan_config["chunk_size"],
        )
        self.aggregator = PnLAggregator(
            db, ledger, valuation, price_manager, blockchain,
            position_manager=instance["position_manager"],
        )


class LPMonitor:
    """Scheduling loop over all configured DEX instances"""

    def __init__(self, config, instances, db=None, price_manager=None, blockchain_factory=None):
        check_unique_instances(instances)
        self.config = config
        self.instances = instances
        self.check_interval = config.get("check_interval", 30)
        self.default_start_block = int(config.get("default_start_block", DEFAULT_START_BLOCK))
        self.scan_config = {
            "chunk_size": int(config["scan"]["chunk_size"]),
            "max_workers": int(config["scan"]["max_workers"]),
        }

        self.db = db or PositionDatabase(config.get("database_path", "lp_positions.db"))
        self.ledger = OperationLedger(self.db)

        # Process-wide caches shared by every instance
        self.token_cache = KeyValueCache("tokens")
        self.pool_cache = KeyValueCache("pools")
        self.decimals_cache = KeyValueCache("decimals")

        self.price_manager = price_manager or PriceManager(
            chain=config.get("chain", "bsc"),
            api_key=config.get("coingecko_api_key", ""),
            retry_policy=RetryPolicy.from_config(config["price_retry"]),
            timeout=config["price_retry"].get("timeout", 20),
        )
        self._blockchain_factory = blockchain_factory or self._make_blockchain
        self._blockchains = {}
        self._contexts = {}

    def _make_blockchain(self, rpc_url):
        return BlockchainManager(
            rpc_url,
            retry_policy=RetryPolicy.from_config(self.config["retry"]),
            timeout=self.config.get("rpc_timeout", 30),
            rpm_limit=int(self.config.get("rpm_limit", 0)),
            token_cache=self.token_cache,
            pool_cache=self.pool_cache,
        )

    def context_for(self, instance):
        key = (instance["dex_type"], instance["position_manager"])
        if key not in self._contexts:
            rpc_url = instance["rpc_url"]
            if rpc_url not in self._blockchains:
                self._blockchains[rpc_url] = self._blockchain_factory(rpc_url)
            blockchain = self._blockchains[rpc_url]
            valuation = PositionValuation(blockchain, self.decimals_cache)
            self._contexts[key] = InstanceContext(
                instance, blockchain, self.db, self.ledger, self.price_manager, valuation, self.scan_config
            )
        return self._contexts[key]

    def run_cycle(self, instance):
        """One full scan for an instance. Raises on unretryable failure; the
        checkpoint only advances after everything for the range is committed."""
        ctx = self.context_for(instance)
        key = checkpoint_key(instance["chain"], instance["dex_type"])
        stored = self.db.get_param(key)
        from_block = int(stored) if stored else self.default_start_block
        latest_block = ctx.blockchain.get_block_number()
        logger.info("%s: scanning blocks %d -> %d", instance["pool_name"], from_block, latest_block)

        ctx.ingestor.discover_positions(instance["owners"], from_block, latest_block)

        active = self.db.get_all_active_positions(instance["pool_name"])
        reopened = ctx.ingestor.find_reactivated(
            self.db.get_inactive_positions(instance["pool_name"]), from_block, latest_block
        )
        logger.info("%s: %d active position(s), %d reopened", instance["pool_name"], len(active), len(reopened))
        tracked = active + reopened
        ctx.ingestor.track_positions(tracked, from_block, latest_block)

        self.price_manager.clear_current_prices()
        snapshots = ctx.aggregator.aggregate_all(tracked, latest_block, self.scan_config["max_workers"])

        self.db.upsert_param(key, latest_block)
        logger.info("%s: cycle complete, %d snapshot(s) updated, checkpoint=%d",
                    instance["pool_name"], len(snapshots), latest_block)
        return snapshots

    def run_once(self):
        """Run every instance once; returns True if all cycles succeeded"""
        ok = True
        for instance in self.instances:
            try:
                self.run_cycle(instance)
            except Exception as e:
                ok = False
                logger.error("Scan cycle failed for %s: %s", instance["pool_name"], e,
                             exc_info=logger.isEnabledFor(logging.DEBUG))
        return ok

    def run_forever(self, sleep=time.sleep):
        """Main loop: failures are logged and retried at the next cycle"""
        logger.info("Monitoring %d instance(s), interval %ss", len(self.instances), self.check_interval)
        while True:
            self.run_once()
            sleep(self.check_interval)

    def close(self):
        self.db.close()
