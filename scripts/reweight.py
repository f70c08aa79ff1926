import sys

import docopt

import rebalancer
import rebalancer.reweight
from rebalancer.exceptions import ConfigError, ParseError

doc = """
usage: ceph-rebalancer -h
       ceph-rebalancer --version
       ceph-rebalancer [-v] [-c PATH] [-l PATH] [--ceph-user USER]
                       [--ceph-conf PATH] [--metrics-addr ADDR]
                       [--max-backfill-pgs N] [--max-recovery-pgs N]
                       [--weight-increment INC] [--sleep-duration DURATION]
                       [--dry-run BOOL] -t WEIGHTS

Gradually raise the CRUSH weight of a set of OSDs towards their target
weights, pausing while the cluster is busy backfilling or recovering.

Options left out are read from the config file, falling back to built-in
defaults.

options:
  -h, --help            show this help message and exit
  --version             show the version and exit
  -v, --verbose         be more verbose
  -c, --config PATH     yaml file to read settings from
                        (~/.ceph-rebalancer.yaml when omitted)
  -l, --log-file PATH   also write the log to this file
  --ceph-user USER      Ceph username provided without the 'client.' prefix
  --ceph-conf PATH      Ceph config used for establishing connection to the
                        cluster (/etc/ceph/ceph.conf)
  --metrics-addr ADDR   Address on which metrics will be exported (:8928)
  -t, --target-osd-crush-weights WEIGHTS
                        OSDs and CRUSH weights provided in format of:
                        'osd-id:weight,osd-id:weight'
  --max-backfill-pgs N  Number of maximum PGs allowed to be in
                        backfill/backfill_wait state (10)
  --max-recovery-pgs N  Number of maximum PGs allowed to be in
                        recovering/recovery_wait state (10)
  --weight-increment INC
                        Value by which the CRUSH weights will be incremented
                        per iteration (0.02)
  --sleep-duration DURATION
                        The amount of time to sleep between each iteration
                        of reweight run, e.g. 30s or 5m (5m)
  --dry-run BOOL        No action taken on the cluster when true. Explicitly
                        pass as false for rebalance to take place (true)
"""


def main(argv=None):
    args = docopt.docopt(doc, argv=argv, version=rebalancer.__version__)
    try:
        rebalancer.reweight.main(args)
    except (ConfigError, ParseError) as e:
        sys.exit("ceph-rebalancer: {err}".format(err=e))
