#!/usr/bin/env python3
"""
Constants Module for LP PnL Monitor
Contains ABIs, DEX variants, event signatures, default configuration and constant values

Version: 1.0.0
"""

# Version and metadata
VERSION = "1.0.0"
CONFIG_FILE = "lp_monitor_config.json"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Block scanning
DEFAULT_CHUNK_SIZE = 10_000
DEFAULT_MAX_WORKERS = 8
DEFAULT_START_BLOCK = 57_000_000
CHECKPOINT_KEY_PREFIX = "last_listen_block"

# Block timestamps within this many blocks of the head may still be reorganised
TIMESTAMP_CONFIRMATIONS = 15
TIMESTAMP_CACHE_SIZE = 50_000

# Operation types stored in the ledger
OP_INCREASE = "IncreaseLiquidity"
OP_DECREASE = "DecreaseLiquidity"
OP_COLLECT = "Collect"
OPERATION_TYPES = (OP_INCREASE, OP_DECREASE, OP_COLLECT)

# Event signatures (topic0 = keccak of these)
EVENT_SIGNATURES = {
    "Transfer": "Transfer(address,address,uint256)",
    OP_INCREASE: "IncreaseLiquidity(uint256,uint128,uint256,uint256)",
    OP_DECREASE: "DecreaseLiquidity(uint256,uint128,uint256,uint256)",
    OP_COLLECT: "Collect(uint256,address,uint256,uint256)",
    "PoolMint": "Mint(address,address,int24,int24,uint128,uint256,uint256)",
}

# DEX variants share the same NonfungiblePositionManager ABI shape; only the
# deployment address and the display/pool name differ.
DEX_VARIANTS = {
    "pancake": {
        "pool_name": "PancakeSwap V3",
        "position_manager": "0x46A15B0b27311cedF172AB29E4f4766fbE7F4364",
    },
    "uniswap": {
        "pool_name": "Uniswap V3",
        "position_manager": "0x7b8A01B39D58278b5DE7e48c8449c9f4F5170613",
    },
}

# Quote token priority per chain, highest priority first
QUOTE_TOKEN_PRIORITY = {
    "bsc": [
        "0x55d398326f99059fF775485246999027B3197955",  # USDT
        "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",  # USDC
        "0x1AF3F329e8BE154074D8769D1FFa4eE058B1DBc3",  # DAI
        "0x8d0D000Ee44948FC98c9B98A4FA4921476f08B0d",  # USD1
        "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",  # WBNB
        "0x2170Ed0880ac9A755fd29B2688956BD959F933F8",  # WETH
    ],
}

# CoinGecko
COINGECKO_API_URL = "https://pro-api.coingecko.com/api/v3"
PRICE_PLATFORMS = {
    "bsc": "binance-smart-chain",
    "ethereum": "ethereum",
}

# Default configuration
DEFAULT_CONFIG = {
    "version": VERSION,
    "rpc_url": "https://bsc-dataseed.bnbchain.org",
    "rpc_timeout": 30,
    "chain": "bsc",
    "coingecko_api_key": "",
    "database_path": "lp_positions.db",
    "check_interval": 30,
    "default_start_block": DEFAULT_START_BLOCK,
    "rpm_limit": 0,                    # 0 disables the RPC rate limiter
    "scan": {
        "chunk_size": DEFAULT_CHUNK_SIZE,
        "max_workers": DEFAULT_MAX_WORKERS
    },
    "retry": {
        "attempts": 3,
        "delay": 1.0,
        "backoff": "fixed"             # "fixed" or "linear"
    },
    "price_retry": {
        "attempts": 5,
        "delay": 2.0,
        "backoff": "fixed",
        "timeout": 20
    },
    "logging": {
        "debug": False,
        "log_file": "lp_monitor.log"
    },
    "instances": []
}

# Uniswap V3 Pool ABI (PancakeSwap V3 packs feeProtocol as uint32)
POOL_ABI = [
    {
        "inputs": [],
        "name": "slot0",
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint32"},
            {"name": "unlocked", "type": "bool"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "feeGrowthGlobal0X128",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "feeGrowthGlobal1X128",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "tick", "type": "int24"}],
        "name": "ticks",
        "outputs": [
            {"name": "liquidityGross", "type": "uint128"},
            {"name": "liquidityNet", "type": "int128"},
            {"name": "feeGrowthOutside0X128", "type": "uint256"},
            {"name": "feeGrowthOutside1X128", "type": "uint256"},
            {"name": "tickCumulativeOutside", "type": "int56"},
            {"name": "secondsPerLiquidityOutsideX128", "type": "uint160"},
            {"name": "secondsOutside", "type": "uint32"},
            {"name": "initialized", "type": "bool"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "token1",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "fee",
        "outputs": [{"name": "", "type": "uint24"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# ERC20 Token ABI for decimals and symbols
TOKEN_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# NonfungiblePositionManager ABI (standard across V3 forks)
POSITION_MANAGER_ABI = [
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "positions",
        "outputs": [
            {"name": "nonce", "type": "uint96"},
            {"name": "operator", "type": "address"},
            {"name": "token0", "type": "address"},
            {"name": "token1", "type": "address"},
            {"name": "fee", "type": "uint24"},
            {"name": "tickLower", "type": "int24"},
            {"name": "tickUpper", "type": "int24"},
            {"name": "liquidity", "type": "uint128"},
            {"name": "feeGrowthInside0LastX128", "type": "uint256"},
            {"name": "feeGrowthInside1LastX128", "type": "uint256"},
            {"name": "tokensOwed0", "type": "uint128"},
            {"name": "tokensOwed1", "type": "uint128"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]
