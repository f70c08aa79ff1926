import enum
import logging
import math

from collections import Counter, namedtuple
from threading import Event

from humanfriendly import format_timespan
from prettytable import PrettyTable

from rebalancer import planner
from rebalancer.config import ReweightConfig
from rebalancer.exceptions import CephError, ConfigError
from rebalancer.gate import HealthGate
from rebalancer.tracker import ConvergenceTracker

log = logging.getLogger(__name__)


class State(enum.Enum):
    idle = 'idle'
    gate_check = 'gate_check'
    held = 'held'
    snapshotting = 'snapshotting'
    applying = 'applying'
    drained = 'drained'


Decision = namedtuple(
    'Decision', ['osd', 'current', 'target', 'action', 'weight'])

# Counter keys of do_reweight() besides the planner actions
MISSING = 'missing'
FAILED = 'failed'


class Rebalancer(object):
    """
    Raises the CRUSH weight of a set of OSDs step by step towards their
    targets, holding off whenever the cluster is busy backfilling or
    recovering.

    It is the caller's responsibility to close() the ceph client once run()
    has returned.

    :param ceph:           a CephClient connected to the cluster
    :param target_weights: dict of OSD id to the CRUSH weight it should reach
    :param config:         a ReweightConfig, or a dict of overrides for one
    """
    def __init__(self, ceph, target_weights, config=None):
        if not target_weights:
            raise ConfigError("no weight map found")
        if ceph is None:
            raise ConfigError("no ceph client found")
        if not isinstance(config, ReweightConfig):
            config = ReweightConfig.from_dict(config)

        targets = dict()
        for osd_id, weight in target_weights.items():
            try:
                osd_id, weight = int(osd_id), float(weight)
            except (TypeError, ValueError):
                raise ConfigError(
                    "invalid target weight %r for osd %r" % (weight, osd_id))
            if not math.isfinite(weight):
                raise ConfigError(
                    "non-finite target weight %s for osd.%d" % (weight, osd_id))
            if weight < 0:
                raise ConfigError(
                    "negative target weight %s for osd.%d" % (weight, osd_id))
            targets[osd_id] = weight

        self.ceph = ceph
        self.config = config
        self.tracker = ConvergenceTracker(targets)
        self.gate = HealthGate(
            ceph, config.max_backfill_pgs, config.max_recovery_pgs)
        self.state = State.idle
        self.cycles = 0
        self.decisions = dict()
        self.stop_event = Event()

    @property
    def dry_run(self):
        return self.config.dry_run

    def run(self, stop_event=None):
        """
        Reweight every sleep_interval seconds until either stop_event is set
        or no OSDs are left to manage.

        A cycle that has started always runs to completion.

        :param stop_event: an Event to stop on instead of the rebalancer's
                           own; shutdown() sets whichever one is in use
        """
        if stop_event is not None:
            self.stop_event = stop_event
        stop_event = self.stop_event
        log.info(
            "Reweighting %d osd(s) in steps of %s every %s%s",
            self.tracker.remaining(),
            self.config.weight_increment,
            format_timespan(self.config.sleep_interval),
            ' (dry run)' if self.dry_run else '',
        )
        while not stop_event.wait(self.config.sleep_interval):
            if self.tracker.drained():
                self.state = State.drained
                log.info("all given osds completed reweighting")
                return
            self.do_reweight()
        log.info("Stopping after %d cycle(s), %d osd(s) left",
                 self.cycles, self.tracker.remaining())

    def shutdown(self):
        self.stop_event.set()

    def do_reweight(self):
        """
        Run a single reweight cycle.

        :returns: a Counter of what happened to the OSDs, keyed by planner
                  action, 'missing' or 'failed'
        """
        counts = Counter()
        if self.tracker.drained():
            self.state = State.drained
            return counts

        self.cycles += 1
        self.state = State.gate_check
        result = self.gate.check()
        if not result.proceed:
            log.info("cycle %d held: %s", self.cycles, result.reason)
            self.state = State.held
            return counts

        self.state = State.snapshotting
        current_weights = self.snapshot(counts)
        if current_weights is None:
            self.state = State.idle
            return counts

        self.state = State.applying
        for osd_id in sorted(current_weights):
            self.reweight_osd(osd_id, current_weights[osd_id], counts)

        self.state = State.drained if self.tracker.drained() else State.idle
        log.debug("cycle %d done: %s", self.cycles, dict(counts))
        return counts

    def snapshot(self, counts=None):
        """
        Read the current CRUSH weights of the managed OSDs.

        Managed OSDs missing from the tree are dropped for good.

        :returns: dict of OSD id to current CRUSH weight, or None if the OSD
                  tree could not be read
        """
        targets = self.tracker.targets()
        try:
            tree = self.ceph.osd_tree()
        except CephError as e:
            log.error("failed to get output of osd-tree: %s", e)
            return None

        osds = tree.osds()
        if not osds:
            log.error("osd tree holds no osds, skipping cycle")
            return None

        current_weights = dict(
            (node.id, node.crush_weight) for node in osds
            if node.id in targets)
        for osd_id in sorted(targets):
            if osd_id not in current_weights:
                log.error("cannot find osd.%d in current osd tree", osd_id)
                self.tracker.remove_target(osd_id)
                if counts is not None:
                    counts[MISSING] += 1
        return current_weights

    def reweight_osd(self, osd_id, current, counts):
        target = self.tracker.target(osd_id)
        if target is None:
            return
        step = planner.plan(
            current, target, self.config.weight_increment,
            self.tracker.last_applied(osd_id))
        self.decisions[osd_id] = Decision(
            osd_id, current, target, step.action, step.weight)
        counts[step.action] += 1

        prefix = "osd.%d (current %s, target %s)" % (osd_id, current, target)
        if step.action == planner.AT_TARGET:
            log.info("%s: target weight achieved", prefix)
        elif step.action == planner.NON_POSITIVE:
            log.error("%s: 0 or negative weight %s found", prefix, step.weight)
        elif step.action == planner.PLATEAU:
            log.info("%s: optimal weight %s achieved", prefix, step.weight)
        if step.terminal:
            self.tracker.remove_target(osd_id)
            return

        if not self.execute(osd_id, step.weight):
            counts[FAILED] += 1

    def execute(self, osd_id, weight):
        """
        Apply weight to osd_id, or only record it when in dry-run mode

        :returns: False if the cluster rejected the reweight
        """
        if self.dry_run:
            log.info("osd.%d: weight %s will be applied in the actual run",
                     osd_id, weight)
            self.tracker.record_applied(osd_id, weight)
            self.tracker.remove_target(osd_id)
            return True

        try:
            self.ceph.crush_reweight(osd_id, weight)
        except CephError as e:
            log.error("osd.%d: cannot reweight to %s: %s", osd_id, weight, e)
            return False
        self.tracker.record_applied(osd_id, weight)
        log.info("osd.%d: reweight to %s applied", osd_id, weight)
        return True

    def report(self):
        """
        A table of the last decision taken for every OSD seen so far
        """
        table = PrettyTable(['osd', 'current', 'target', 'next', 'action'])
        table.align = 'r'
        for osd_id in sorted(self.decisions):
            d = self.decisions[osd_id]
            table.add_row([
                'osd.%d' % d.osd,
                d.current,
                d.target,
                '-' if d.weight is None else d.weight,
                d.action,
            ])
        return table.get_string()
