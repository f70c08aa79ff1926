import cherrypy
import logging

from rebalancer import metric
from rebalancer.exceptions import ConfigError

log = logging.getLogger(__name__)

DEFAULT_ADDR = '0.0.0.0'
DEFAULT_PORT = 8928

INDEX = '''<!DOCTYPE html>
<html>
    <head><title>Ceph Rebalancer</title></head>
    <body>
        <h1>Prometheus metrics for Ceph Rebalancer</h1>
        <p><a href='/metrics'>Metrics</a></p>
    </body>
</html>'''


def parse_addr(addr):
    """
    Split 'host:port' into (host, port). An empty host means all addresses;
    IPv6 hosts go in brackets, as in '[::1]:8928'.
    """
    host, sep, port = (addr or '').rpartition(':')
    if not sep:
        host, port = addr, ''
    host = host.strip('[]') or DEFAULT_ADDR
    if not port:
        return host, DEFAULT_PORT
    try:
        port = int(port)
    except ValueError:
        raise ConfigError("invalid metrics address: %r" % addr)
    if not 0 < port < 65536:
        raise ConfigError("invalid metrics port: %r" % addr)
    return host, port


class Root(object):
    def __init__(self, tracker):
        self.tracker = tracker

    @cherrypy.expose
    def index(self):
        return INDEX

    @cherrypy.expose
    def metrics(self):
        cherrypy.response.headers['Content-Type'] = 'text/plain'
        return metric.collect(self.tracker)


class MetricsExporter(object):
    """
    Serves the state of a Rebalancer's tracker over HTTP for Prometheus to
    scrape. The cherrypy engine runs in its own threads; start() returns
    right away.
    """
    def __init__(self, tracker, addr=':%d' % DEFAULT_PORT):
        self.tracker = tracker
        self.host, self.port = parse_addr(addr)

    def start(self):
        log.info("metrics server_addr: %s server_port: %s",
                 self.host, self.port)
        cherrypy.config.update({
            'server.socket_host': self.host,
            'server.socket_port': self.port,
            'engine.autoreload.on': False,
            'log.screen': False,
        })
        cherrypy.tree.mount(Root(self.tracker), '/')
        log.info('Starting engine...')
        cherrypy.engine.start()
        log.info('Engine started.')

    def stop(self):
        log.info('Stopping engine...')
        cherrypy.engine.stop()
        cherrypy.server.httpserver = None
        log.info('Engine stopped.')
