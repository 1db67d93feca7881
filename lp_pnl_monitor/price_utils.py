#!/usr/bin/env python3
"""
Price Utilities Module for LP PnL Monitor
Token USD prices from CoinGecko, historical (by day) and current

A zero or missing price is never a valid answer: it raises
PriceUnavailableError and the retry policy tries again.

Version: 1.0.0
"""

import logging
import threading

import requests

from .constants import COINGECKO_API_URL, PRICE_PLATFORMS
from .exceptions import PriceUnavailableError
from .retry import RetryPolicy
from .utils import KeyValueCache

logger = logging.getLogger(__name__)


class PriceManager:
    """CoinGecko price oracle with process-wide caches"""

    def __init__(self, chain="bsc", api_key="", session=None, retry_policy=None,
                 timeout=20, base_url=COINGECKO_API_URL, history_cache=None):
        self.chain = chain
        self.platform = PRICE_PLATFORMS.get(chain, chain)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.retry = retry_policy or RetryPolicy(max_attempts=5, delay=2.0)

        # address_date -> usd; historical prices never change
        self.history_cache = history_cache if history_cache is not None else KeyValueCache("prices")
        # address -> usd for the current cycle
        self.current_cache = KeyValueCache("current_prices")
        self._coin_ids = None
        self._coin_lock = threading.Lock()

    def _get(self, path, params=None, timeout=None):
        response = self.session.get(
            f"{self.base_url}{path}",
            params=params,
            headers={"accept": "application/json", "x-cg-pro-api-key": self.api_key},
            timeout=timeout or self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def _load_coin_ids(self):
        """address (lowercase) -> coin id for this chain, falling back to ethereum listings"""
        coins = self._get("/coins/list", params={"include_platform": "true"})
        ids = {}
        # Chain-native listings take precedence over ethereum ones
        for platform in ("ethereum", self.platform):
            for coin in coins:
                address = (coin.get("platforms") or {}).get(platform)
                if address:
                    ids[address.lower()] = coin["id"]
        logger.info("Loaded %d CoinGecko coin ids for %s", len(ids), self.platform)
        return ids

    def get_coin_id(self, token_address):
        with self._coin_lock:
            if self._coin_ids is None:
                self._coin_ids = self.retry.call(self._load_coin_ids, description="coins/list")
        coin_id = self._coin_ids.get(token_address.lower())
        if not coin_id:
            raise PriceUnavailableError(f"Token {token_address} not found in price list")
        return coin_id

    def fetch_historical_price(self, token_address, date):
        """One request for the USD price of a token on dd-mm-yyyy"""
        coin_id = self.get_coin_id(token_address)
        data = self._get(f"/coins/{coin_id}/history", params={"date": date, "localization": "false"})
        price = ((data.get("market_data") or {}).get("current_price") or {}).get("usd") or 0
        if not price:
            raise PriceUnavailableError(f"No price for {token_address} on {date}")
        return float(price)

    def fetch_current_price(self, token_address):
        """One request for the current USD price of a token"""
        data = self._get(
            f"/simple/token_price/{self.platform}",
            params={"contract_addresses": token_address, "vs_currencies": "usd"},
            timeout=min(self.timeout, 5),
        )
        price = (data.get(token_address.lower()) or {}).get("usd") or 0
        if not price:
            raise PriceUnavailableError(f"No current price for {token_address}")
        return float(price)

    def get_historical_price(self, token_address, date):
        """USD price on a date; raises RetryExhaustedError if it cannot be found"""
        cache_key = f"{token_address.lower()}_{date}"
        cached = self.history_cache.get(cache_key)
        if cached is not None:
            return cached
        price = self.retry.call(self.fetch_historical_price, token_address, date,
                                description=f"price {token_address} {date}")
        return self.history_cache.insert_if_absent(cache_key, price)

    def get_current_price(self, token_address):
        """Current USD price, cached until clear_current_prices()"""
        cache_key = token_address.lower()
        cached = self.current_cache.get(cache_key)
        if cached is not None:
            return cached
        price = self.retry.call(self.fetch_current_price, token_address,
                                description=f"current price {token_address}")
        return self.current_cache.insert_if_absent(cache_key, price)

    def clear_current_prices(self):
        """Start a new cycle with fresh live prices"""
        self.current_cache = KeyValueCache("current_prices")
