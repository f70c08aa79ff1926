import pytest
import time

from threading import Event, Thread
from unittest.mock import patch

from rebalancer import planner
from rebalancer.config import ReweightConfig
from rebalancer.exceptions import ConfigError
from rebalancer.rebalancer import Rebalancer, State, MISSING, FAILED
from rebalancer.test.fake_ceph import FakeCephClient, osd


def two_osds(weight1=0.0, weight2=0.0):
    return [osd(1, weight1), osd(2, weight2)]


def make(ceph, targets, **config):
    config.setdefault('dry_run', False)
    return Rebalancer(ceph, targets, config=config)


class TestConstruction(object):
    def test_empty_targets(self):
        with pytest.raises(ConfigError):
            Rebalancer(FakeCephClient(), {})

    def test_no_client(self):
        with pytest.raises(ConfigError):
            Rebalancer(None, {1: 2.0})

    def test_negative_target(self):
        with pytest.raises(ConfigError):
            Rebalancer(FakeCephClient(), {1: -2.0})

    @pytest.mark.parametrize('weight', [float('nan'), float('inf'), 'nan'])
    def test_non_finite_target(self, weight):
        with pytest.raises(ConfigError):
            Rebalancer(FakeCephClient(), {1: weight})

    def test_non_finite_increment(self):
        with pytest.raises(ConfigError):
            Rebalancer(FakeCephClient(), {1: 2.0},
                       config={'weight_increment': 'nan'})

    def test_bad_config(self):
        with pytest.raises(ConfigError):
            Rebalancer(FakeCephClient(), {1: 2.0}, config={'bogus': 1})

    def test_defaults(self):
        r = Rebalancer(FakeCephClient(), {'1': '2.5'})
        assert r.config == ReweightConfig(
            max_backfill_pgs=10,
            max_recovery_pgs=10,
            weight_increment=0.02,
            sleep_interval=30.0,
            dry_run=True,
        )
        assert r.dry_run
        assert r.tracker.targets() == {1: 2.5}
        assert r.state == State.idle

    def test_config_object(self):
        config = ReweightConfig.from_dict({'weight_increment': 1.0})
        r = Rebalancer(FakeCephClient(), {1: 2.0}, config=config)
        assert r.config is config


class TestDoReweight(object):
    """
    Each case runs a number of cycles against a fake cluster and checks the
    reweights the cluster received.
    """
    @pytest.mark.parametrize(
        'name, nodes, backfilling, recovering, increment, dry_run, '
        'iterations, reweight_count, applied, targets', [
            ('high backfill pgs', [], 100, 0, 0.02, False, 1, 0, {},
             {1: 7.4999, 2: 15.4999}),
            ('high recovery pgs', [], 0, 100, 0.02, False, 1, 0, {},
             {1: 7.4999, 2: 15.4999}),
            ('zero increment', [], 0, 0, 0.0, False, 1, 0, {},
             {1: 7.4999, 2: 15.4999}),
            ('dry run', two_osds(), 0, 0, 4.0, True, 1, 0, {},
             {1: 7.4999, 2: 15.4999}),
            ('single increment', two_osds(), 0, 0, 4.0, False, 1, 1,
             {1: 4.0, 2: 4.0}, {1: 4.0, 2: 4.0}),
            ('distinct target weights', two_osds(), 0, 0, 4.0, False, 1, 1,
             {1: 4.0, 2: 4.0}, {1: 16.0, 2: 8.0}),
            ('same target weight reached', two_osds(), 0, 0, 4.0, False, 10,
             1, {1: 2.0, 2: 2.0}, {1: 2.0, 2: 2.0}),
            ('distinct target weight reached', two_osds(), 0, 0, 8.0, False,
             10, 1, {1: 2.0, 2: 4.0}, {1: 2.0, 2: 4.0}),
            ('granular target weight reached', two_osds(), 0, 0, 0.02, False,
             1000, 125, {1: 2.4999, 2: 2.4999}, {1: 2.4999, 2: 2.4999}),
            ('non-zero crush weight', two_osds(1.0, 0.0), 0, 0, 4.0, False,
             10, 1, {1: 2.0, 2: 2.0}, {1: 2.0, 2: 2.0}),
            ('same target weight small iterations', two_osds(), 0, 0, 0.2,
             False, 10, 10, {1: 2.0, 2: 2.0}, {1: 2.0, 2: 2.0}),
            ('incomplete iterations', two_osds(), 0, 0, 0.2, False, 5, 5,
             {1: 1.0, 2: 1.0}, {1: 2.0, 2: 2.0}),
        ])
    def test_cases(self, name, nodes, backfilling, recovering, increment,
                   dry_run, iterations, reweight_count, applied, targets):
        ceph = FakeCephClient(nodes, backfilling, recovering)
        r = make(ceph, targets, weight_increment=increment, dry_run=dry_run)
        for _ in range(iterations):
            r.do_reweight()

        assert ceph.reweight_count() == reweight_count * len(nodes), name
        last = dict()
        for osd_id, weight in ceph.reweights:
            last[osd_id] = weight
        assert last == applied, name

    def test_held_cycle_changes_nothing(self):
        ceph = FakeCephClient(two_osds(), backfilling=11)
        r = make(ceph, {1: 4.0, 2: 4.0}, weight_increment=1.0)
        counts = r.do_reweight()
        assert not counts
        assert r.state == State.held
        assert 'osd_tree' not in ceph.calls
        assert ceph.reweights == []
        assert r.tracker.targets() == {1: 4.0, 2: 4.0}

    def test_gate_query_failure_skips_cycle(self):
        ceph = FakeCephClient(two_osds())
        ceph.fail_queries.add('recovering_pgs')
        r = make(ceph, {1: 4.0, 2: 4.0}, weight_increment=1.0)
        r.do_reweight()
        assert r.state == State.held
        assert ceph.reweights == []
        ceph.fail_queries.clear()
        r.do_reweight()
        assert ceph.reweight_count() == 2

    def test_snapshot_failure_skips_cycle(self):
        ceph = FakeCephClient(two_osds())
        ceph.fail_queries.add('osd_tree')
        r = make(ceph, {1: 4.0, 2: 4.0}, weight_increment=1.0)
        r.do_reweight()
        assert r.state == State.idle
        assert ceph.reweights == []
        assert r.tracker.remaining() == 2

    def test_zero_increment_empty_tree_keeps_targets(self):
        ceph = FakeCephClient([])
        targets = {1: 7.4999, 2: 15.4999}
        r = make(ceph, targets, weight_increment=0)
        for _ in range(3):
            r.do_reweight()
        assert ceph.reweights == []
        assert r.tracker.targets() == targets

    def test_missing_osd_dropped(self):
        ceph = FakeCephClient([osd(1), osd(-1, type='host')])
        r = make(ceph, {1: 2.0, 2: 2.0, -1: 2.0}, weight_increment=1.0)
        counts = r.do_reweight()
        assert counts[MISSING] == 2
        assert r.tracker.targets() == {1: 2.0}
        assert ceph.reweights == [(1, 1.0)]
        # dropped OSDs are not revisited even if they show up later
        ceph.nodes.append(osd(2))
        r.do_reweight()
        assert ceph.reweight_count(2) == 0

    def test_zero_increment_drops_everything(self):
        ceph = FakeCephClient(two_osds(0.0, 1.0))
        r = make(ceph, {1: 2.0, 2: 2.0}, weight_increment=0.0)
        counts = r.do_reweight()
        assert counts[planner.NON_POSITIVE] == 1
        assert counts[planner.PLATEAU] == 1
        assert ceph.reweights == []
        assert r.tracker.drained()
        assert r.state == State.drained

    def test_weight_never_lowered(self):
        ceph = FakeCephClient([osd(1, 1.00003)])
        r = make(ceph, {1: 2.0}, weight_increment=0.00001)
        counts = r.do_reweight()
        assert counts[planner.PLATEAU] == 1
        assert ceph.reweights == []
        assert ceph.weights() == {1: 1.00003}
        assert r.tracker.drained()

    def test_single_increment_kept_until_next_cycle(self):
        ceph = FakeCephClient(two_osds())
        r = make(ceph, {1: 4.0, 2: 4.0}, weight_increment=4.0)
        counts = r.do_reweight()
        assert counts[planner.APPLY] == 2
        assert ceph.reweights == [(1, 4.0), (2, 4.0)]
        assert r.tracker.targets() == {1: 4.0, 2: 4.0}
        assert r.state == State.idle

        counts = r.do_reweight()
        assert counts[planner.AT_TARGET] == 2
        assert ceph.reweight_count() == 2
        assert r.tracker.targets() == {}
        assert r.state == State.drained

    def test_at_target_removed_without_apply(self):
        ceph = FakeCephClient(two_osds(3.0, 2.0))
        r = make(ceph, {1: 2.0, 2: 2.0}, weight_increment=1.0)
        counts = r.do_reweight()
        assert counts[planner.AT_TARGET] == 2
        assert ceph.reweights == []
        assert r.tracker.drained()

    def test_plateau_below_target(self):
        # CRUSH stores 2.4999 as 2.49989..., which never reaches the target
        ceph = FakeCephClient(two_osds(2.4, 2.4), quantize=True)
        r = make(ceph, {1: 2.4999, 2: 2.4999}, weight_increment=0.2)
        r.do_reweight()
        assert ceph.reweights == [(1, 2.4999), (2, 2.4999)]
        assert ceph.weights()[1] < 2.4999
        counts = r.do_reweight()
        assert counts[planner.PLATEAU] == 2
        assert ceph.reweight_count() == 2
        assert r.tracker.drained()

    def test_reweight_failure_retried(self):
        ceph = FakeCephClient(two_osds())
        ceph.fail_reweight.add(1)
        r = make(ceph, {1: 2.0, 2: 2.0}, weight_increment=1.0)
        counts = r.do_reweight()
        assert counts[FAILED] == 1
        assert r.tracker.last_applied(1) is None
        assert r.tracker.target(1) == 2.0
        assert ceph.reweights == [(2, 1.0)]

        ceph.fail_reweight.clear()
        r.do_reweight()
        assert ceph.weights() == {1: 1.0, 2: 2.0}

    def test_dry_run(self):
        ceph = FakeCephClient(two_osds())
        r = Rebalancer(ceph, {1: 7.4999, 2: 15.4999},
                       config={'weight_increment': 4.0})
        assert r.dry_run
        r.do_reweight()
        assert 'crush_reweight' not in ceph.calls
        assert r.tracker.drained()
        assert r.tracker.applied() == {1: 4.0, 2: 4.0}
        assert ceph.weights() == {1: 0.0, 2: 0.0}

    def test_drained_is_noop(self):
        ceph = FakeCephClient(two_osds(2.0, 2.0))
        r = make(ceph, {1: 2.0, 2: 2.0})
        r.do_reweight()
        assert r.tracker.drained()
        calls = list(ceph.calls)
        cycles = r.cycles
        assert not r.do_reweight()
        assert ceph.calls == calls
        assert r.cycles == cycles
        assert r.state == State.drained

    def test_ledger_monotonic_and_bounded(self):
        ceph = FakeCephClient(two_osds(0.0, 0.3))
        targets = {1: 1.0, 2: 3.3333}
        r = make(ceph, targets, weight_increment=0.35)
        seen = dict()
        for _ in range(20):
            r.do_reweight()
            for osd_id, weight in r.tracker.applied().items():
                assert weight <= targets[osd_id]
                assert weight >= seen.get(osd_id, 0.0)
                seen[osd_id] = weight
        assert r.tracker.drained()
        assert ceph.weights() == {1: 1.0, 2: 3.3333}

    def test_report(self):
        ceph = FakeCephClient(two_osds())
        r = Rebalancer(ceph, {1: 2.0, 2: 4.0},
                       config={'weight_increment': 4.0})
        r.do_reweight()
        report = r.report()
        assert 'osd.1' in report
        assert 'osd.2' in report
        assert planner.APPLY in report


class TestRun(object):
    def test_run_until_drained(self):
        ceph = FakeCephClient(two_osds())
        r = make(ceph, {1: 1.0, 2: 2.0}, weight_increment=0.5,
                 sleep_interval=0.001)
        r.run()
        assert r.state == State.drained
        assert ceph.weights() == {1: 1.0, 2: 2.0}
        assert ceph.reweight_count() == 6

    def test_cancelled_before_first_tick(self):
        ceph = FakeCephClient(two_osds())
        r = make(ceph, {1: 1.0}, sleep_interval=0.001)
        stop = Event()
        stop.set()
        r.run(stop)
        assert ceph.calls == []
        assert r.tracker.remaining() == 1

    def test_shutdown_from_another_thread(self):
        ceph = FakeCephClient(two_osds(), backfilling=100)
        r = make(ceph, {1: 1.0}, sleep_interval=0.001)
        thread = Thread(target=r.run)
        thread.start()
        r.shutdown()
        thread.join(5)
        assert not thread.is_alive()
        assert ceph.reweights == []

    def test_shutdown_sets_given_event(self):
        ceph = FakeCephClient(two_osds(), backfilling=100)
        r = make(ceph, {1: 1.0}, sleep_interval=0.001)
        stop = Event()
        thread = Thread(target=r.run, args=(stop,))
        thread.start()
        while r.cycles == 0 and thread.is_alive():
            time.sleep(0.001)
        r.shutdown()
        thread.join(5)
        assert not thread.is_alive()
        assert stop.is_set()

    def test_waits_between_cycles(self):
        ceph = FakeCephClient(two_osds())
        r = make(ceph, {1: 1.0}, weight_increment=1.0, sleep_interval=60)
        stop = Event()
        with patch.object(stop, 'wait', side_effect=[False, False, True]) \
                as m_wait:
            r.run(stop)
        m_wait.assert_called_with(60.0)
        assert r.cycles == 2
        assert ceph.reweights == [(1, 1.0)]
