import logging

from collections import namedtuple

from rebalancer.exceptions import CephError

log = logging.getLogger(__name__)


GateResult = namedtuple(
    'GateResult', ['proceed', 'reason', 'backfilling', 'recovering'])


class HealthGate(object):
    """
    Decides whether a reweight cycle may run, based on how much data the
    cluster is already moving.

    :param ceph:             a CephClient
    :param max_backfill_pgs: highest acceptable number of backfilling PGs
    :param max_recovery_pgs: highest acceptable number of recovering PGs
    """
    def __init__(self, ceph, max_backfill_pgs, max_recovery_pgs):
        self.ceph = ceph
        self.max_backfill_pgs = max_backfill_pgs
        self.max_recovery_pgs = max_recovery_pgs

    def check(self):
        try:
            backfilling = self.ceph.backfilling_pgs()
        except CephError as e:
            log.error("failed checking for backfilling pgs: %s", e)
            return GateResult(False, 'backfill query failed', None, None)
        if backfilling > self.max_backfill_pgs:
            log.warning(
                "skipping reweighting, %d backfilling pgs found (max %d)",
                backfilling, self.max_backfill_pgs)
            return GateResult(
                False, 'backfilling pgs: %d' % backfilling, backfilling, None)

        try:
            recovering = self.ceph.recovering_pgs()
        except CephError as e:
            log.error("failed checking for recovering pgs: %s", e)
            return GateResult(False, 'recovery query failed', backfilling, None)
        if recovering > self.max_recovery_pgs:
            log.warning(
                "skipping reweighting, %d recovering pgs found (max %d)",
                recovering, self.max_recovery_pgs)
            return GateResult(
                False, 'recovering pgs: %d' % recovering, backfilling,
                recovering)

        log.debug("%d backfilling and %d recovering pgs, proceeding",
                  backfilling, recovering)
        return GateResult(True, None, backfilling, recovering)
