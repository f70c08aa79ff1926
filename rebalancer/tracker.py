import logging

from threading import Lock

log = logging.getLogger(__name__)


class ConvergenceTracker(object):
    """
    The state shared between the reweight loop and the metrics reader.

    Holds the OSDs still being managed (OSD id -> target weight) and the
    ledger of the last weight issued per OSD. The loop is the only writer;
    readers get copies taken under the lock, never the live dicts.
    """
    def __init__(self, target_weights):
        self.lock = Lock()
        self._targets = dict(target_weights)
        self._applied = dict()

    def record_applied(self, osd_id, weight):
        with self.lock:
            self._applied[osd_id] = weight

    def last_applied(self, osd_id):
        """
        :returns: the last weight recorded for osd_id, or None
        """
        with self.lock:
            return self._applied.get(osd_id)

    def targets(self):
        with self.lock:
            return dict(self._targets)

    def target(self, osd_id):
        with self.lock:
            return self._targets.get(osd_id)

    def remove_target(self, osd_id):
        """
        Stop managing osd_id. Removed OSDs are never added back.
        """
        with self.lock:
            removed = self._targets.pop(osd_id, None)
        if removed is not None:
            log.debug("osd.%s no longer managed (target %s)", osd_id, removed)
        return removed

    def remaining(self):
        with self.lock:
            return len(self._targets)

    def drained(self):
        return self.remaining() == 0

    def applied(self):
        with self.lock:
            return dict(self._applied)

    def snapshot(self):
        """
        A consistent view of the ledger and the number of OSDs left

        :returns: (ledger copy, remaining count)
        """
        with self.lock:
            return dict(self._applied), len(self._targets)
