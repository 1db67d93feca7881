#!/usr/bin/env python3
"""
Configuration Management Module for LP PnL Monitor
Handles loading, saving, defaulting and validation of the monitor configuration

Version: 1.0.0
"""

import copy
import json
import logging
import os

from web3 import Web3

from .constants import CONFIG_FILE, DEFAULT_CONFIG
from .exceptions import ConfigError
from .utils import get_dex_variant

logger = logging.getLogger(__name__)


def load_config(path=CONFIG_FILE):
    """Load configuration from JSON file, create default if doesn't exist"""
    if not os.path.exists(path):
        logger.warning("Configuration file not found. Creating default config at %s", path)
        save_config(copy.deepcopy(DEFAULT_CONFIG), path)
        logger.warning("Please edit the configuration file and restart the monitor.")
        return None

    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error reading config file {path}: {e}") from e

    # Update config with any missing default values
    if update_config_with_defaults(config):
        save_config(config, path)
        logger.info("Updated configuration with new settings")

    apply_env_overrides(config)
    return config


def save_config(config, path=CONFIG_FILE):
    """Save configuration to JSON file"""
    with open(path, 'w') as f:
        json.dump(config, f, indent=4)


def update_config_with_defaults(config):
    """Update configuration with any missing default values"""
    updated = False

    def update_nested_dict(target, source):
        nonlocal updated
        for key, value in source.items():
            if key not in target:
                target[key] = copy.deepcopy(value)
                updated = True
            elif isinstance(value, dict) and isinstance(target[key], dict):
                update_nested_dict(target[key], value)

    update_nested_dict(config, DEFAULT_CONFIG)
    return updated


def apply_env_overrides(config):
    """Secrets may come from the environment instead of the config file"""
    api_key = os.environ.get("CG_API_KEY")
    if api_key:
        config["coingecko_api_key"] = api_key
    rpc_url = os.environ.get("LP_MONITOR_RPC_URL")
    if rpc_url:
        config["rpc_url"] = rpc_url
    return config


def resolve_instance(instance, config):
    """Fill an instance entry from its DEX variant; unknown dex_type fails fast"""
    variant = get_dex_variant(instance.get("dex_type"))
    owners = instance.get("owners") or []
    for owner in owners:
        if not Web3.is_address(owner):
            raise ConfigError(f"Invalid owner address: {owner}")

    return {
        "dex_type": instance["dex_type"].lower(),
        "pool_name": variant["pool_name"],
        "position_manager": instance.get("position_manager") or variant["position_manager"],
        "rpc_url": instance.get("rpc_url") or config["rpc_url"],
        "chain": instance.get("chain") or config.get("chain", "bsc"),
        "owners": [Web3.to_checksum_address(owner) for owner in owners],
    }


def validate_config(config):
    """Validate configuration and return resolved instances; raises ConfigError"""
    if not config.get("rpc_url"):
        raise ConfigError("rpc_url is not set")

    instances = config.get("instances") or []
    if not instances:
        raise ConfigError("No instances configured. Add entries with 'dex_type' and 'owners'")

    scan = config.get("scan", {})
    if int(scan.get("chunk_size", 1)) < 1:
        raise ConfigError("scan.chunk_size must be >= 1")
    if int(scan.get("max_workers", 1)) < 1:
        raise ConfigError("scan.max_workers must be >= 1")

    resolved = [resolve_instance(instance, config) for instance in instances]
    check_unique_instances(resolved)
    return resolved


def check_unique_instances(instances):
    """Scan checkpoints and stored positions are keyed per chain and DEX"""
    seen = set()
    for instance in instances:
        key = (instance["chain"], instance["dex_type"])
        if key in seen:
            raise ConfigError(
                f"Duplicate instance for {instance['dex_type']} on {instance['chain']}; "
                "list all owners in a single entry"
            )
        seen.add(key)
