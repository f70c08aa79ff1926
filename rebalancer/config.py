import logging
import math
import os
import yaml

from collections import namedtuple
from collections.abc import MutableMapping

from humanfriendly import coerce_boolean, parse_timespan, InvalidTimespan

from rebalancer.exceptions import ConfigError, ParseError

log = logging.getLogger(__name__)


class YamlConfig(MutableMapping):
    """
    A configuration object populated by parsing a yaml file, with optional
    default values.

    Note that modifying the _defaults attribute of an instance can potentially
    yield confusing results; if you need to do modify defaults, use the class
    variable or create a subclass.
    """
    _defaults = dict()

    def __init__(self, yaml_path=None):
        self.yaml_path = yaml_path
        if self.yaml_path:
            self.load()
        else:
            self._conf = dict()

    def load(self):
        if os.path.exists(self.yaml_path):
            with open(self.yaml_path) as f:
                self._conf = yaml.safe_load(f) or dict()
        else:
            log.debug("%s not found", self.yaml_path)
            self._conf = dict()

    def to_dict(self):
        """
        :returns: The defaults overlaid with the loaded values, as a dict
        """
        result = dict(self._defaults)
        result.update(self._conf)
        return result

    def __str__(self):
        return yaml.safe_dump(self.to_dict(), default_flow_style=False).strip()

    def __getitem__(self, name):
        return self.__getattr__(name)

    def __getattr__(self, name):
        if name.startswith('__') or name in ('_conf', 'yaml_path'):
            raise AttributeError(name)
        return self._conf.get(name, self._defaults.get(name))

    def __contains__(self, name):
        return self._conf.__contains__(name)

    def __setattr__(self, name, value):
        if name.endswith('_conf') or name == 'yaml_path':
            object.__setattr__(self, name, value)
        else:
            self._conf[name] = value

    def __len__(self):
        return self._conf.__len__()

    def __iter__(self):
        return self._conf.__iter__()

    def __setitem__(self, name, value):
        self._conf.__setitem__(name, value)

    def __delitem__(self, name):
        self._conf.__delitem__(name)


class RebalancerConfig(YamlConfig):
    """
    Settings for the ceph-rebalancer command, read from
    ~/.ceph-rebalancer.yaml unless another path is given. Command line
    options take precedence over anything set here.
    """
    yaml_path = os.path.expanduser('~/.ceph-rebalancer.yaml')
    _defaults = {
        'ceph_user': None,
        'ceph_conf': '/etc/ceph/ceph.conf',
        'metrics_addr': ':8928',
        'max_backfill_pgs': 10,
        'max_recovery_pgs': 10,
        'weight_increment': 0.02,
        'sleep_duration': '5m',
        'dry_run': True,
    }

    def __init__(self, yaml_path=None):
        super(RebalancerConfig, self).__init__(yaml_path or self.yaml_path)


def parse_duration(value):
    """
    Seconds from a number or a human timespan like '30s' or '5m'
    """
    if isinstance(value, bool):
        raise ConfigError("invalid duration: %r" % value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(parse_timespan(str(value)))
    except (InvalidTimespan, ValueError) as e:
        raise ConfigError("invalid duration %r: %s" % (value, e))


def parse_bool(value):
    if isinstance(value, bool):
        return value
    try:
        return coerce_boolean(str(value))
    except ValueError as e:
        raise ConfigError(str(e))


_reweight_fields = [
    'max_backfill_pgs',
    'max_recovery_pgs',
    'weight_increment',
    'sleep_interval',
    'dry_run',
]


class ReweightConfig(namedtuple('ReweightConfig', _reweight_fields)):
    """
    Immutable settings of a Rebalancer.

    Build it with :meth:`from_dict`, which applies the defaults before the
    overrides and validates the result as a whole.
    """
    __slots__ = ()

    defaults = {
        'max_backfill_pgs': 10,
        'max_recovery_pgs': 10,
        'weight_increment': 0.02,
        'sleep_interval': 30.0,
        'dry_run': True,
    }

    @classmethod
    def from_dict(cls, overrides=None):
        overrides = dict(overrides or {})
        unknown = set(overrides) - set(cls._fields)
        if unknown:
            raise ConfigError(
                "unknown rebalancer option(s): %s" % ', '.join(sorted(unknown)))
        values = dict(cls.defaults)
        values.update(
            (k, v) for k, v in overrides.items() if v is not None)

        for name in ('max_backfill_pgs', 'max_recovery_pgs'):
            values[name] = _to_int(name, values[name])
            if values[name] < 0:
                raise ConfigError("%s cannot be negative" % name)
        try:
            values['weight_increment'] = float(values['weight_increment'])
        except (TypeError, ValueError):
            raise ConfigError(
                "weight_increment should be a float, %r provided" %
                values['weight_increment'])
        if not math.isfinite(values['weight_increment']):
            raise ConfigError(
                "weight_increment should be finite, %r provided" %
                values['weight_increment'])
        if values['weight_increment'] < 0:
            raise ConfigError("weight_increment cannot be negative")
        values['sleep_interval'] = parse_duration(values['sleep_interval'])
        if values['sleep_interval'] <= 0:
            raise ConfigError("sleep_interval must be positive")
        values['dry_run'] = parse_bool(values['dry_run'])
        return cls(**values)


def _to_int(name, value):
    if isinstance(value, bool):
        raise ConfigError("%s should be an integer, %r provided" % (name, value))
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError("%s should be an integer, %r provided" % (name, value))


def parse_target_weights(weights_str):
    """
    Parse the OSD to target CRUSH weight mapping.

    The expected format is a comma separated list of 'osd-id:weight' pairs::

        '1:2.5999,2:2.5999,3:4.798'

    which becomes ``{1: 2.5999, 2: 2.5999, 3: 4.798}``.
    """
    parts = [p.strip() for p in (weights_str or '').split(',') if p.strip()]
    if not parts:
        raise ParseError("empty target-weight map found")

    weights = dict()
    for part in parts:
        osd_and_weight = part.split(':', 1)
        if len(osd_and_weight) < 2:
            raise ParseError("incorrect osd-weight pair provided: %r" % part)

        osd_id, weight = osd_and_weight
        try:
            osd = int(osd_id)
        except ValueError as e:
            raise ParseError(
                "osd id should be an integer, %r provided: %s" % (osd_id, e))
        try:
            w = float(weight)
        except ValueError as e:
            raise ParseError(
                "weight should be a float, %r provided: %s" % (weight, e))
        if not math.isfinite(w):
            raise ParseError("weight should be finite: %r" % part)
        if w < 0:
            raise ParseError("weight cannot be negative: %r" % part)

        weights[osd] = w
    return weights
