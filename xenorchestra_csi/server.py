# Copyright 2025 Vates
# All Rights Reserved.
#
#    Licensed under the Apache License, Version 2.0 (the "License"); you may
#    not use this file except in compliance with the License. You may obtain
#    a copy of the License at
#
#         http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
#    WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
#    License for the specific language governing permissions and limitations
#    under the License.

from concurrent import futures
import errno
import os
import threading

import grpc
from oslo_log import log as logging

from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

LOG = logging.getLogger(__name__)

UNIX_SCHEME = 'unix://'

RUNNING = 'running'
STOPPING = 'stopping'
STOPPED = 'stopped'


def parse_endpoint(endpoint):
    """Return the socket path of a unix:// endpoint."""
    if not endpoint or not endpoint.startswith(UNIX_SCHEME):
        raise exception.PluginMisconfigured(
            reason=_('unsupported endpoint {}, only unix:// sockets are '
                     'supported').format(endpoint))
    path = endpoint[len(UNIX_SCHEME):]
    if not path:
        raise exception.PluginMisconfigured(
            reason=_('endpoint {} has no socket path').format(endpoint))
    return path


def _remove_stale_socket(path):
    try:
        os.remove(path)
    except OSError as ex:
        if ex.errno != errno.ENOENT:
            raise exception.PluginMisconfigured(
                reason=_('failed to remove {path}: {ex}').format(
                    path=path, ex=ex))
    else:
        LOG.debug('Removed stale socket %s', path)


class NonBlockingGRPCServer(object):
    """A gRPC server on a unix socket, stopped at most once.

    The server moves from running to stopping to stopped. Only the first
    stop request performs the transition, later ones return at once.
    """

    def __init__(self, workers=10, grace_period=30):
        self.workers = workers
        self.grace_period = grace_period
        self.state = None
        self._server = None
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def start(self, endpoint, handlers):
        path = parse_endpoint(endpoint)
        with self._lock:
            if self.state is not None:
                raise exception.CSIDriverException(
                    _('Server has already been started'))
            _remove_stale_socket(path)
            server = grpc.server(
                futures.ThreadPoolExecutor(max_workers=self.workers),
                handlers=handlers)
            server.add_insecure_port(UNIX_SCHEME + path)
            server.start()
            self._server = server
            self.state = RUNNING
        LOG.info('Listening for connections on address: %s', endpoint)

    def wait(self, timeout=None):
        """Block until the server has stopped."""
        return self._stopped.wait(timeout)

    def stop(self):
        """Stop the server and cancel in-flight RPCs."""
        self._stop(None)

    def graceful_stop(self):
        """Stop the server and let in-flight RPCs complete."""
        self._stop(self.grace_period)

    def _stop(self, grace):
        with self._lock:
            if self.state != RUNNING:
                LOG.debug('Server is %s, ignoring stop request', self.state)
                return
            self.state = STOPPING
            server = self._server

        LOG.info('Stopping server')
        server.stop(grace).wait()

        with self._lock:
            self.state = STOPPED
        self._stopped.set()
        LOG.info('Server stopped')
