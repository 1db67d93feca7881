"""Shared fixtures: temporary SQLite database, ledger and a sample position."""

import pytest

from lp_pnl_monitor.ledger import OperationLedger
from lp_pnl_monitor.models import Position
from lp_pnl_monitor.position_database import PositionDatabase
from lp_pnl_monitor.utils import timestamp_to_iso

from fakes import GENESIS_TS, OWNER, POOL, USDT, WBNB


@pytest.fixture
def db(tmp_path):
    database = PositionDatabase(str(tmp_path / "lp_positions.db"))
    yield database
    database.close()


@pytest.fixture
def ledger(db):
    return OperationLedger(db)


@pytest.fixture
def make_position():
    """WBNB/USDT position; base_location says which pool slot WBNB occupies."""
    def _make(token_id=1, creation_block=100, base_location="token0", tick_lower=-600, tick_upper=600):
        return Position(
            pool_address=POOL,
            position_token_id=token_id,
            pool_name="PancakeSwap V3",
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            base_token_address=WBNB,
            quote_token_address=USDT,
            base_token_location=base_location,
            creation_time=timestamp_to_iso(GENESIS_TS + creation_block * 3),
            creation_block=creation_block,
            owner=OWNER,
            pair_name="WBNB/USDT",
        )
    return _make
