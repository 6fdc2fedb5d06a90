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

"""Xen Orchestra client used by the controller service.

The driver only needs a handful of operations on VDIs (volumes), VBDs
(attachments) and VMs (nodes). They are described by HypervisorClient so the
controller can be exercised against a fake; XoClient is the implementation
talking JSON-RPC to a Xen Orchestra server.
"""

import abc
import collections
import itertools
import threading

from oslo_config import cfg
from oslo_log import log as logging
from oslo_serialization import jsonutils
from oslo_utils import timeutils
import requests

from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

CONF = cfg.CONF
LOG = logging.getLogger(__name__)

Vdi = collections.namedtuple('Vdi', ['id', 'pool_id', 'size', 'name_label'])
Vbd = collections.namedtuple('Vbd', [
    'id', 'vdi_id', 'vm_id', 'attached', 'device'])
Vm = collections.namedtuple('Vm', ['id', 'pool_id', 'host_id', 'name_label'])


class HypervisorClient(object, metaclass=abc.ABCMeta):
    """Operations the CSI controller needs from the hypervisor."""

    @abc.abstractmethod
    def get_vdi(self, vdi_id):
        """Return the Vdi, raise VolumeNotFound if it does not exist."""

    @abc.abstractmethod
    def get_vm(self, vm_id):
        """Return the Vm, raise NodeNotFound if it does not exist."""

    @abc.abstractmethod
    def list_vbds_for_vdi(self, vdi_id):
        """Return every Vbd referencing the VDI, across the pool."""

    @abc.abstractmethod
    def get_vbd(self, vdi_id, vm_id):
        """Return the Vbd binding the VDI to the VM, or None."""

    @abc.abstractmethod
    def attach_disk(self, vdi_id, vm_id):
        """Add the VDI to the VM and plug it, without waiting."""

    @abc.abstractmethod
    def connect_vbd(self, vbd_id):
        """Plug an existing VBD into its running VM."""

    @abc.abstractmethod
    def disconnect_vbd(self, vbd_id):
        """Unplug a VBD from its VM, the VBD itself is kept."""

    def attach_vdi_to_vm(self, vdi_id, vm_id, timeout=None,
                         cancel_event=None):
        """Attach the VDI to the VM and wait until a device is assigned.

        :returns: the connected Vbd
        """
        self.attach_disk(vdi_id, vm_id)
        vbd = self.wait_for_vdi_attached(
            vdi_id, vm_id, timeout=timeout, cancel_event=cancel_event)
        LOG.info('VDI %(vdi)s attached to VM %(vm)s as %(device)s',
                 {'vdi': vdi_id, 'vm': vm_id, 'device': vbd.device})
        return vbd

    def wait_for_vdi_attached(self, vdi_id, vm_id, timeout=None,
                              interval=None, cancel_event=None):
        """Poll until the VBD of the VDI on the VM is connected.

        A disk attach can succeed before the VBD is plugged and has a device
        name, so the VBD is queried every `interval` seconds until it is
        attached with a device, the timeout expires or `cancel_event` is set.
        Failed queries are logged and retried.

        :param timeout: seconds to wait, capped by [xenorchestra]
                        attach_timeout
        :param interval: seconds between queries, defaults to
                         [xenorchestra] attach_poll_interval
        :param cancel_event: threading.Event set when the caller gave up
        :returns: the connected Vbd
        """
        max_timeout = CONF.xenorchestra.attach_timeout
        if timeout is None or timeout > max_timeout:
            timeout = max_timeout
        if interval is None:
            interval = CONF.xenorchestra.attach_poll_interval
        if cancel_event is None:
            cancel_event = threading.Event()

        watch = timeutils.StopWatch(duration=timeout)
        watch.start()
        while not watch.expired():
            if cancel_event.wait(min(interval, watch.leftover())):
                raise exception.AttachCancelled(vdi=vdi_id, vm=vm_id)

            try:
                vbd = self.get_vbd(vdi_id, vm_id)
            except exception.HypervisorError as ex:
                LOG.warning('Failed to get VBD of VDI %(vdi)s on VM %(vm)s '
                            'while waiting for the attachment: %(ex)s',
                            {'vdi': vdi_id, 'vm': vm_id, 'ex': ex})
                continue

            if vbd is not None and vbd.attached and vbd.device:
                LOG.debug('VBD %(vbd)s is attached to VM %(vm)s as '
                          '%(device)s', {'vbd': vbd.id, 'vm': vm_id,
                                         'device': vbd.device})
                return vbd
            LOG.debug('VDI %(vdi)s not yet attached to VM %(vm)s, waiting',
                      {'vdi': vdi_id, 'vm': vm_id})

        raise exception.AttachTimeout(vdi=vdi_id, vm=vm_id, timeout=timeout)


def _vdi_from_object(obj):
    return Vdi(id=obj['id'],
               pool_id=obj.get('$pool', ''),
               size=obj.get('size', 0),
               name_label=obj.get('name_label', ''))


def _vbd_from_object(obj):
    return Vbd(id=obj['id'],
               vdi_id=obj.get('VDI', ''),
               vm_id=obj.get('VM', ''),
               attached=bool(obj.get('attached')),
               device=obj.get('device') or '')


def _vm_from_object(obj):
    return Vm(id=obj['id'],
              pool_id=obj.get('$pool', ''),
              host_id=obj.get('$container', ''),
              name_label=obj.get('name_label', ''))


class XoClient(HypervisorClient):
    """JSON-RPC client for the Xen Orchestra API."""

    def __init__(self, url, token, insecure=False, timeout=30):
        self.endpoint = url.rstrip('/') + '/api/'
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = not insecure
        self.session.headers['Content-Type'] = 'application/json'
        if token:
            self.session.cookies.set('authenticationToken', token)
        self._ids = itertools.count(1)

    @classmethod
    def from_conf(cls, conf):
        if not conf.xenorchestra.url:
            raise exception.PluginMisconfigured(
                reason=_('[xenorchestra] url is not set'))
        return cls(conf.xenorchestra.url,
                   conf.xenorchestra.token,
                   insecure=conf.xenorchestra.insecure,
                   timeout=conf.xenorchestra.timeout)

    def call(self, method, params=None):
        """Invoke a JSON-RPC method and return its result."""
        payload = {
            'jsonrpc': '2.0',
            'id': next(self._ids),
            'method': method,
            'params': params or {},
        }
        LOG.debug('XO API - %s', method)
        try:
            response = self.session.post(
                self.endpoint, data=jsonutils.dumps(payload),
                timeout=self.timeout)
            response.raise_for_status()
            body = jsonutils.loads(response.text)
        except (requests.RequestException, ValueError) as ex:
            raise exception.HypervisorError(method=method, reason=ex)
        if not isinstance(body, dict):
            raise exception.HypervisorError(
                method=method,
                reason=_('unexpected response {}').format(response.text))

        error = body.get('error')
        if error:
            if isinstance(error, dict):
                error = error.get('message', error)
            raise exception.HypervisorError(method=method, reason=error)
        return body.get('result')

    def _get_objects(self, **filters):
        objects = self.call('xo.getAllObjects', {'filter': filters}) or {}
        return sorted(objects.values(), key=lambda obj: obj['id'])

    def get_vdi(self, vdi_id):
        objects = self._get_objects(type='VDI', id=vdi_id)
        if not objects:
            raise exception.VolumeNotFound(vdi=vdi_id)
        return _vdi_from_object(objects[0])

    def get_vm(self, vm_id):
        objects = self._get_objects(type='VM', id=vm_id)
        if not objects:
            raise exception.NodeNotFound(vm=vm_id)
        return _vm_from_object(objects[0])

    def list_vbds_for_vdi(self, vdi_id):
        return [_vbd_from_object(obj)
                for obj in self._get_objects(type='VBD', VDI=vdi_id)]

    def get_vbd(self, vdi_id, vm_id):
        objects = self._get_objects(type='VBD', VDI=vdi_id, VM=vm_id)
        if not objects:
            return None
        return _vbd_from_object(objects[0])

    def attach_disk(self, vdi_id, vm_id):
        result = self.call('vm.attachDisk', {
            'mode': 'RW',
            'vdi': vdi_id,
            'vm': vm_id,
        })
        if result is not True:
            raise exception.HypervisorError(
                method='vm.attachDisk',
                reason=_('attaching VDI {vdi} to VM {vm} returned '
                         '{result}').format(vdi=vdi_id, vm=vm_id,
                                            result=result))

    def connect_vbd(self, vbd_id):
        LOG.info('Connecting VBD %s', vbd_id)
        self.call('vbd.connect', {'id': vbd_id})

    def disconnect_vbd(self, vbd_id):
        LOG.info('Disconnecting VBD %s', vbd_id)
        self.call('vbd.disconnect', {'id': vbd_id})
