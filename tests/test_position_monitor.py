"""
Test Suite — Scan Cycle & Entry Point
======================================

End-to-end cycles over an in-memory chain: discovery, tracking,
aggregation and checkpointing, plus failure handling and the CLI exit codes.

Run:  python -m pytest tests/test_position_monitor.py -v
"""

import copy
import importlib
import json

import pytest

from lp_pnl_monitor.constants import DEFAULT_CONFIG, OP_COLLECT, OP_DECREASE, OP_INCREASE
from lp_pnl_monitor.exceptions import ConfigError
from lp_pnl_monitor.main import main
from lp_pnl_monitor.models import PoolSnapshot, PositionState
from lp_pnl_monitor.position_monitor import LPMonitor, checkpoint_key
from lp_pnl_monitor.v3_math import Q96, Q128

from fakes import (
    OWNER, POOL, POSITION_MANAGER, USDT, WBNB, FakeChain, FixedPrices,
    add_minted_position, liquidity_log, tx
)

OTHER_OWNER = "0x2222222222222222222222222222222222222222"
E18 = 10 ** 18
# the package re-exports main(), so fetch the module itself
main_module = importlib.import_module("lp_pnl_monitor.main")
CHECKPOINT = checkpoint_key("bsc", "pancake")


class StopLoop(Exception):
    pass


def position_state(liquidity):
    return PositionState(token0=WBNB, token1=USDT, fee=500, tick_lower=-600, tick_upper=600,
                         liquidity=liquidity, fee_growth_inside0_last_x128=0, fee_growth_inside1_last_x128=0,
                         tokens_owed0=0, tokens_owed1=0)


@pytest.fixture
def chain():
    chain = FakeChain(head=1000)
    chain.pool_tokens[POOL] = (WBNB, USDT, 500)
    chain.tokens[WBNB.lower()] = {"decimals": 18, "symbol": "WBNB"}
    chain.tokens[USDT.lower()] = {"decimals": 18, "symbol": "USDT"}
    chain.pool_snapshots[POOL] = PoolSnapshot(
        tick=0, sqrt_price_x96=Q96,
        fee_growth_global0_x128=Q128 // 1000, fee_growth_global1_x128=0,
        fee_growth_outside_lower0_x128=0, fee_growth_outside_lower1_x128=0,
        fee_growth_outside_upper0_x128=0, fee_growth_outside_upper1_x128=0,
    )
    chain.position_states[1] = position_state(E18)

    tx_hash = add_minted_position(chain, 1, OWNER, 150)
    chain.logs.append(liquidity_log(OP_INCREASE, 1, E18, E18, 600 * E18, block=150, log_index=3, tx_hash=tx_hash))
    return chain


@pytest.fixture
def instance():
    return {
        "dex_type": "pancake",
        "pool_name": "PancakeSwap V3",
        "position_manager": POSITION_MANAGER,
        "rpc_url": "http://rpc.local",
        "chain": "bsc",
        "owners": [OWNER],
    }


def make_monitor(db, chain, instances):
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["default_start_block"] = 100
    config["scan"] = {"chunk_size": 100, "max_workers": 4}
    config["check_interval"] = 5
    prices = FixedPrices({WBNB: 600.0, USDT: 1.0})
    return LPMonitor(config, instances, db=db, price_manager=prices, blockchain_factory=lambda url: chain)


@pytest.fixture
def monitor(db, chain, instance):
    return make_monitor(db, chain, [instance])


class TestRunCycle:

    def test_first_cycle(self, monitor, db, ledger, instance):
        [snapshot] = monitor.run_cycle(instance)

        assert db.get_param(CHECKPOINT) == "1000"
        assert ledger.count() == 1
        assert snapshot.is_active is True
        assert snapshot.pair_name == "WBNB/USDT"
        assert snapshot.total_add_value_usd == pytest.approx(1200.0)
        # 1e18 liquidity at 1/1000 fee growth per unit -> 1e15 raw WBNB owed
        assert snapshot.unclaimed_fee_base_amount == pytest.approx(0.001)
        assert snapshot.unclaimed_fee_base_value_usd == pytest.approx(0.6)
        assert db.get_snapshot(POOL, 1, "PancakeSwap V3") == snapshot

    def test_rerun_from_same_checkpoint_is_idempotent(self, monitor, db, ledger, instance):
        first = monitor.run_cycle(instance)[0]
        db.upsert_param(CHECKPOINT, 100)
        second = monitor.run_cycle(instance)[0]

        assert ledger.count() == 1
        assert db.count_snapshots() == 1
        assert second.pnl_total_usd == pytest.approx(first.pnl_total_usd)
        assert second.total_add_value_usd == first.total_add_value_usd

    def test_next_cycle_resumes_from_checkpoint(self, monitor, chain, ledger, instance):
        monitor.run_cycle(instance)
        chain.head = 2000
        chain.logs.append(liquidity_log(OP_COLLECT, 1, 0, E18 // 100, 0, block=1500))
        chain.get_logs_calls.clear()

        monitor.run_cycle(instance)

        assert min(start for _, start, _ in chain.get_logs_calls) == 1000
        assert ledger.count() == 2

    def test_closed_position_leaves_active_set(self, monitor, chain, db, instance):
        chain.logs.append(liquidity_log(OP_DECREASE, 1, E18, E18, 600 * E18, block=300, tx_hash=tx(77)))
        chain.logs.append(liquidity_log(OP_COLLECT, 1, 0, E18, 600 * E18, block=300, log_index=1, tx_hash=tx(77)))
        chain.position_states[1] = position_state(0)

        [snapshot] = monitor.run_cycle(instance)

        assert snapshot.is_active is False
        assert snapshot.end_block_number == 300
        assert db.get_all_active_positions("PancakeSwap V3") == []

        chain.head = 2000
        assert monitor.run_cycle(instance) == []

    def test_liquidity_re_added_in_later_cycle_reactivates(self, monitor, chain, db, ledger, instance):
        chain.logs.append(liquidity_log(OP_DECREASE, 1, E18, E18, 600 * E18, block=300, tx_hash=tx(77)))
        chain.position_states[1] = position_state(0)
        [closed] = monitor.run_cycle(instance)
        assert closed.is_active is False

        chain.head = 2000
        chain.logs.append(liquidity_log(OP_INCREASE, 1, E18, E18, 600 * E18, block=1500, tx_hash=tx(88)))
        chain.position_states[1] = position_state(E18)

        [reopened] = monitor.run_cycle(instance)

        assert reopened.is_active is True
        assert reopened.end_block_number is None
        assert reopened.total_add_value_usd == pytest.approx(2400.0)
        assert ledger.count() == 3
        assert [p.position_token_id for p in db.get_all_active_positions("PancakeSwap V3")] == [1]

    def test_closed_position_rescanned_from_checkpoint(self, monitor, chain, instance):
        chain.logs.append(liquidity_log(OP_DECREASE, 1, E18, E18, 600 * E18, block=300, tx_hash=tx(77)))
        chain.position_states[1] = position_state(0)
        monitor.run_cycle(instance)

        [closed] = monitor.db.get_inactive_positions("PancakeSwap V3")
        assert closed.end_block_number == 300

        chain.get_logs_calls.clear()
        chain.head = 2000
        assert monitor.run_cycle(instance) == []
        assert min(start for _, start, _ in chain.get_logs_calls) == 1000

    def test_duplicate_dex_instances_rejected(self, db, chain, instance):
        second = dict(instance, owners=[OTHER_OWNER])
        with pytest.raises(ConfigError, match="Duplicate instance"):
            make_monitor(db, chain, [instance, second])

    def test_every_owner_of_an_instance_is_discovered(self, db, chain, instance):
        add_minted_position(chain, 2, OTHER_OWNER, 160)
        chain.position_states[2] = position_state(0)
        monitor = make_monitor(db, chain, [dict(instance, owners=[OWNER, OTHER_OWNER])])

        assert monitor.run_once() is True

        assert db.position_exists("PancakeSwap V3", 1)
        assert db.position_exists("PancakeSwap V3", 2)
        assert db.get_param(CHECKPOINT) == "1000"

    def test_failure_keeps_checkpoint(self, monitor, chain, db, ledger, instance):
        chain.fail_ranges.add((100, 199))
        with pytest.raises(RuntimeError):
            monitor.run_cycle(instance)
        assert db.get_param(CHECKPOINT) is None
        assert ledger.count() == 0

    def test_run_once_reports_failure(self, monitor, chain, db):
        chain.fail_ranges.add((100, 199))
        assert monitor.run_once() is False
        assert db.get_param(CHECKPOINT) is None

        chain.fail_ranges.clear()
        assert monitor.run_once() is True
        assert db.get_param(CHECKPOINT) == "1000"

    def test_run_forever_sleeps_between_cycles(self, monitor, db):
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                raise StopLoop()

        with pytest.raises(StopLoop):
            monitor.run_forever(sleep=sleep)
        assert sleeps == [5, 5]
        assert db.get_param(CHECKPOINT) == "1000"

    def test_blockchain_shared_per_rpc_url(self, monitor, instance):
        other = dict(instance, dex_type="uniswap", pool_name="Uniswap V3",
                     position_manager="0x7b8A01B39D58278b5DE7e48c8449c9f4F5170613")
        assert monitor.context_for(instance).blockchain is monitor.context_for(other).blockchain
        assert monitor.context_for(instance) is monitor.context_for(dict(instance))


class TestMain:

    @pytest.fixture(autouse=True)
    def calls(self, monkeypatch):
        calls = []
        monkeypatch.setattr(main_module, "setup_logging",
                            lambda debug=False, log_file=None: calls.append(("setup_logging", debug, log_file)))
        return calls

    def test_missing_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "lp_monitor_config.json"
        assert main(["--config", str(path), "--once"]) == 1
        assert path.exists()

    def test_invalid_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{")
        assert main(["--config", str(path), "--once"]) == 1

    def test_logging_configured_before_config_is_loaded(self, tmp_path, monkeypatch, calls):
        real_load = main_module.load_config

        def load(path):
            calls.append(("load_config", path))
            return real_load(path)

        monkeypatch.setattr(main_module, "load_config", load)
        path = tmp_path / "lp_monitor_config.json"
        assert main(["--config", str(path), "--once", "--debug"]) == 1
        assert calls == [("setup_logging", True, None), ("load_config", str(path))]

    def test_logging_reconfigured_from_config(self, tmp_path, calls):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config["logging"] = {"debug": True, "log_file": str(tmp_path / "monitor.log")}
        config["instances"] = [{"dex_type": "pancake", "owners": [OWNER]},
                               {"dex_type": "pancake", "owners": [OWNER]}]
        path = tmp_path / "lp_monitor_config.json"
        path.write_text(json.dumps(config))

        assert main(["--config", str(path), "--once"]) == 1
        assert calls == [("setup_logging", False, None),
                         ("setup_logging", True, str(tmp_path / "monitor.log"))]
