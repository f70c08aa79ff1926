"""
Decide what to do with a single OSD during a reweight cycle.
"""
from collections import namedtuple

# Next weights are rounded to this many decimal places before comparison
ROUND_TO_PLACES = 4

AT_TARGET = 'at_target'
NON_POSITIVE = 'non_positive'
PLATEAU = 'plateau'
APPLY = 'apply'

TERMINAL_ACTIONS = (AT_TARGET, NON_POSITIVE, PLATEAU)


class Plan(namedtuple('Plan', ['action', 'weight'])):
    __slots__ = ()

    @property
    def terminal(self):
        """
        True when the OSD needs no further cycles
        """
        return self.action in TERMINAL_ACTIONS


def next_weight(current, target, increment):
    return min(round(current + increment, ROUND_TO_PLACES), target)


def plan(current, target, increment, last_applied=None):
    """
    Classify an OSD and compute the weight to apply to it.

    The checks run in order:

    1. ``current >= target``: the target is reached.
    2. the next weight is ``current + increment`` rounded, capped at target.
    3. a next weight of zero or less can never be applied.
    4. a next weight that does not raise the current one, or that equals
       the last one applied, means the increment no longer moves the OSD
       (plateau). Weights are never lowered.
    5. otherwise the next weight should be applied.

    :param current:      CRUSH weight reported by the cluster
    :param target:       weight the OSD should end up with
    :param increment:    maximum weight change per cycle
    :param last_applied: weight issued for this OSD last time, or None
    :returns:            a Plan; ``weight`` is None when the target is reached
    """
    if current >= target:
        return Plan(AT_TARGET, None)

    weight = next_weight(current, target, increment)
    if weight <= 0:
        return Plan(NON_POSITIVE, weight)

    if weight <= current:
        return Plan(PLATEAU, weight)

    if last_applied is not None and last_applied == weight:
        return Plan(PLATEAU, weight)

    return Plan(APPLY, weight)
