from typing import Dict, Optional, Tuple, Union

LabelValues = Tuple[str, ...]
Number = Union[int, float]

PREFIX = 'rebalancer'


class Metric(object):
    def __init__(self, mtype: str, name: str, desc: str, labels: Optional[LabelValues] = None) -> None:
        self.mtype = mtype
        self.name = name
        self.desc = desc
        self.labelnames = labels  # tuple if present
        self.value: Dict[LabelValues, Number] = {}

    def set(self, value: Number, labelvalues: Optional[LabelValues] = None) -> None:
        # labelvalues must be a tuple
        labelvalues = labelvalues or ('',)
        self.value[labelvalues] = value

    def str_expfmt(self) -> str:
        name = "{0}_{1}".format(PREFIX, self.name)
        expfmt = '''
# HELP {name} {desc}
# TYPE {name} {mtype}'''.format(
            name=name,
            desc=self.desc,
            mtype=self.mtype,
        )

        for labelvalues, value in self.value.items():
            if self.labelnames:
                labels_list = zip(self.labelnames, labelvalues)
                labels = ','.join('%s="%s"' % (k, v) for k, v in labels_list)
            else:
                labels = ''
            if labels:
                fmtstr = '\n{name}{{{labels}}} {value}'
            else:
                fmtstr = '\n{name} {value}'
            expfmt += fmtstr.format(
                name=name,
                labels=labels,
                value=repr(float(value)),
            )
        return expfmt


def build_metrics(tracker) -> Dict[str, Metric]:
    """
    Gauges for the current state of a ConvergenceTracker.

    The ledger and the remaining count are read in one go so both gauges
    describe the same moment.
    """
    applied, remaining = tracker.snapshot()

    crush_weight = Metric(
        'gauge', 'crushweight', 'Crush Weight set for a given OSD', ('osd',))
    for osd_id in sorted(applied):
        crush_weight.set(applied[osd_id], (str(osd_id),))

    target_osds = Metric(
        'gauge', 'target_osds_total',
        'Count of target OSDs still left to be upweighted')
    target_osds.set(remaining)

    return {
        'crushweight': crush_weight,
        'target_osds_total': target_osds,
    }


def collect(tracker) -> str:
    metrics = build_metrics(tracker)
    return ''.join(m.str_expfmt() for m in metrics.values()) + '\n'
