#!/usr/bin/env python3
"""
LP PnL Monitor Package
Position lifecycle and PnL accounting for concentrated-liquidity DEX positions

Package Structure:
├── __init__.py              # This file - package initialization
├── main.py                  # Entry point: CLI args, logging, banner
├── config.py                # Configuration load/validate, DEX instance resolution
├── constants.py             # ABIs, DEX variants, defaults
├── exceptions.py            # Error taxonomy
├── models.py                # Position, Operation, snapshots
├── utils.py                 # Caches, base/quote selection, log field decoding
├── retry.py                 # Retry policy for chain and price calls
├── v3_math.py               # Exact tick/sqrt-price/fee-growth math
├── blockchain.py            # Web3 chain reader
├── price_utils.py           # CoinGecko price oracle
├── valuation.py             # Current amounts and unclaimed fees
├── event_ingestor.py        # Chunked log scans, position discovery
├── ledger.py                # Idempotent operation ledger
├── pnl.py                   # Ledger replay and PnL snapshots
├── position_database.py     # SQLite schema, positions, snapshots, checkpoints
└── position_monitor.py      # Scan cycle loop

Version: 1.0.0
"""

# Import main components for package-level access
from .main import main
from .position_monitor import LPMonitor
from .blockchain import BlockchainManager
from .config import load_config, save_config, validate_config
from .constants import VERSION, DEFAULT_CONFIG
from .event_ingestor import EventIngestor, chunk_ranges
from .ledger import OperationLedger
from .pnl import PnLAggregator, replay_ledger
from .position_database import PositionDatabase
from .price_utils import PriceManager
from .valuation import PositionValuation

# Package metadata
__version__ = VERSION
__description__ = "Concentrated-liquidity position ledger and PnL monitor"

__all__ = [
    'main',
    'LPMonitor',
    'BlockchainManager',
    'EventIngestor',
    'OperationLedger',
    'PnLAggregator',
    'PositionDatabase',
    'PositionValuation',
    'PriceManager',
    'chunk_ranges',
    'replay_ledger',
    'load_config',
    'save_config',
    'validate_config',
    'VERSION',
    'DEFAULT_CONFIG'
]


def run():
    """Convenience function to run the monitor"""
    return main()

# Module dependency overview:
"""
Dependency Flow:
main.py
├── config.py
└── position_monitor.py
    ├── blockchain.py ── retry.py
    ├── price_utils.py ── retry.py
    ├── event_ingestor.py
    │   └── ledger.py
    ├── valuation.py ── v3_math.py
    └── pnl.py
        ├── ledger.py
        └── valuation.py
"""
