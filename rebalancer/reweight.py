import logging
import signal

from rebalancer import setup_log_file, install_except_hook
from rebalancer.ceph import CephCLIClient
from rebalancer.config import RebalancerConfig, parse_target_weights
from rebalancer.exporter import MetricsExporter
from rebalancer.rebalancer import Rebalancer

log = logging.getLogger(__name__)

# docopt option -> RebalancerConfig key
OPTIONS = {
    '--ceph-user': 'ceph_user',
    '--ceph-conf': 'ceph_conf',
    '--metrics-addr': 'metrics_addr',
    '--max-backfill-pgs': 'max_backfill_pgs',
    '--max-recovery-pgs': 'max_recovery_pgs',
    '--weight-increment': 'weight_increment',
    '--sleep-duration': 'sleep_duration',
    '--dry-run': 'dry_run',
}


def load_config(args):
    """
    Overlay the options given on the command line on the config file

    :param args: the dict docopt returned
    """
    conf = RebalancerConfig(args.get('--config'))
    for option, key in OPTIONS.items():
        value = args.get(option)
        if value is not None:
            conf[key] = value
    return conf


def reweight_config(conf):
    return dict(
        max_backfill_pgs=conf.max_backfill_pgs,
        max_recovery_pgs=conf.max_recovery_pgs,
        weight_increment=conf.weight_increment,
        sleep_interval=conf.sleep_duration,
        dry_run=conf.dry_run,
    )


def install_signal_handlers(rebalancer):
    def handler(signum, frame):
        log.info("Caught signal %s, finishing the current cycle...", signum)
        rebalancer.shutdown()

    for signum in (signal.SIGTERM, signal.SIGINT):
        signal.signal(signum, handler)


def main(args):
    if args.get('--verbose'):
        logging.getLogger('rebalancer').setLevel(logging.DEBUG)
    if args.get('--log-file'):
        setup_log_file(args['--log-file'])
    install_except_hook()

    conf = load_config(args)
    log.debug("Effective config:\n%s", conf)
    target_weights = parse_target_weights(args['--target-osd-crush-weights'])

    ceph = CephCLIClient(user=conf.ceph_user, conf_path=conf.ceph_conf)
    try:
        rebalancer = Rebalancer(
            ceph, target_weights, config=reweight_config(conf))
        exporter = MetricsExporter(rebalancer.tracker, conf.metrics_addr)
        exporter.start()
        try:
            install_signal_handlers(rebalancer)
            rebalancer.run()
        finally:
            exporter.stop()
        if rebalancer.dry_run:
            print(rebalancer.report())
    finally:
        ceph.close()
    return rebalancer
