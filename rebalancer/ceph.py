"""
Thin client for the handful of cluster queries and commands the rebalancer
needs.
"""
import json
import logging
import os
import subprocess

from collections import namedtuple

from rebalancer.exceptions import (
    CommandFailedError,
    ConfigError,
    UnparsableOutputError,
)

log = logging.getLogger(__name__)

BACKFILL_STATES = ('backfilling', 'backfill_wait')
RECOVERY_STATES = ('recovering', 'recovery_wait')


OSDTreeNode = namedtuple(
    'OSDTreeNode',
    ['id', 'name', 'type', 'status', 'reweight', 'crush_weight'],
)


class OSDTree(object):
    """
    A parsed version of ``ceph osd tree --format json``.

    :param nodes: OSDTreeNode entries placed in the CRUSH hierarchy
    :param stray: OSDTreeNode entries that exist but are not in the hierarchy
    """
    def __init__(self, nodes=None, stray=None):
        self.nodes = list(nodes or [])
        self.stray = list(stray or [])

    @classmethod
    def from_dict(cls, in_dict):
        return cls(
            nodes=[cls._node(n) for n in in_dict.get('nodes', [])],
            stray=[cls._node(n) for n in in_dict.get('stray', [])],
        )

    @staticmethod
    def _node(node):
        return OSDTreeNode(
            id=int(node['id']),
            name=node.get('name', ''),
            type=node.get('type', ''),
            status=node.get('status', ''),
            reweight=float(node.get('reweight', 0.0)),
            crush_weight=float(node.get('crush_weight', 0.0)),
        )

    def osds(self):
        return [n for n in self.nodes if n.type == 'osd']


def count_pgs_by_state(status, states):
    """
    Sum the PG counts of ``ceph status`` whose state name contains any of
    the given states.

    State names are '+'-joined, e.g. ``active+remapped+backfill_wait``; a
    group is counted once even if it matches several states.
    """
    count = 0
    for group in status.get('pgmap', {}).get('pgs_by_state', []):
        names = group.get('state_name', '').split('+')
        if any(state in names for state in states):
            count += int(group.get('count', 0))
    return count


class CephClient(object):
    """
    The operations the rebalancer performs against a cluster.

    Failures are reported by raising
    :class:`rebalancer.exceptions.CephError`.
    """

    def backfilling_pgs(self):
        """
        Number of PGs in 'backfilling' or 'backfill_wait' state.
        """
        raise NotImplementedError()

    def recovering_pgs(self):
        """
        Number of PGs in 'recovering' or 'recovery_wait' state.
        """
        raise NotImplementedError()

    def osd_tree(self):
        """
        :returns: an OSDTree
        """
        raise NotImplementedError()

    def crush_reweight(self, osd_id, weight):
        raise NotImplementedError()

    def close(self):
        raise NotImplementedError()


class CephCLIClient(CephClient):
    """
    Drives the ``ceph`` command line tool.

    :param user:      Ceph username, without the 'client.' prefix
    :param conf_path: Path to the cluster's ceph.conf. The cluster name is
                      derived from it, as in /etc/ceph/<cluster>.conf
    """
    executable = 'ceph'

    def __init__(self, user=None, conf_path='/etc/ceph/ceph.conf'):
        conf_parts = os.path.basename(conf_path).split('.', 1)
        if len(conf_parts) < 2 or not conf_parts[0]:
            raise ConfigError("invalid ceph conf: %r" % conf_path)
        self.cluster = conf_parts[0]
        self.user = user
        self.conf_path = conf_path

    def base_cmd(self):
        cmd = [
            self.executable,
            '--cluster', self.cluster,
            '--conf', self.conf_path,
        ]
        if self.user:
            cmd.extend(['--name', 'client.%s' % self.user])
        return cmd

    def call(self, args):
        """
        Run a ceph command and return its stdout

        :raises: CommandFailedError on a non-zero exit status
        """
        command = self.base_cmd() + args
        log.debug("Running command: %s", ' '.join(command))
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
        )
        stdout, stderr = process.communicate()
        if process.returncode != 0:
            raise CommandFailedError(command, process.returncode, stderr)
        return stdout

    def call_json(self, args):
        command = args + ['--format', 'json']
        out = self.call(command)
        try:
            return json.loads(out)
        except ValueError as e:
            raise UnparsableOutputError(command, out, str(e))

    def status(self):
        return self.call_json(['status'])

    def backfilling_pgs(self):
        return count_pgs_by_state(self.status(), BACKFILL_STATES)

    def recovering_pgs(self):
        return count_pgs_by_state(self.status(), RECOVERY_STATES)

    def osd_tree(self):
        out = self.call_json(['osd', 'tree'])
        try:
            return OSDTree.from_dict(out)
        except (KeyError, TypeError, ValueError) as e:
            raise UnparsableOutputError(['osd', 'tree'], out, str(e))

    def crush_reweight(self, osd_id, weight):
        self.call(['osd', 'crush', 'reweight', 'osd.%d' % osd_id, str(weight)])

    def close(self):
        # every call is its own process; nothing is held open
        log.debug("Closing ceph client for cluster %s", self.cluster)
