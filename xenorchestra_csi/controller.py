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

"""CSI controller service.

Attaching a volume means getting a connected VBD between the VDI and the
node VM. No state is kept between calls: every request re-reads the VBDs of
the VDI from Xen Orchestra and takes the smallest step that reaches the
requested state, so a retried request converges instead of failing.
"""

from oslo_log import log as logging

from xenorchestra_csi import capabilities
from xenorchestra_csi import common
from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

LOG = logging.getLogger(__name__)


class ControllerService(object):
    """Publishes VDIs to node VMs."""

    capabilities = ('PUBLISH_UNPUBLISH_VOLUME', 'GET_VOLUME')

    def __init__(self, client):
        self.client = client

    def get_capabilities(self, request):
        return {
            'capabilities': [{'rpc': {'type': rpc}}
                             for rpc in self.capabilities],
        }

    def publish_volume(self, request, cancel_event=None, timeout=None):
        """Attach the VDI to the node VM.

        Only one VBD of a VDI may be connected in the whole pool, and Xen
        Orchestra does not enforce it, so every VBD of the VDI is checked
        before anything is changed.

        :param request: ControllerPublishVolume request mapping
        :param cancel_event: threading.Event set when the caller gave up
        :param timeout: seconds the caller is still willing to wait
        :returns: the response mapping, its publish context holds the
                  device name and the VBD id
        """
        vm_id = request.get('node_id')
        if not vm_id:
            raise exception.InvalidArgument(reason=_('Node ID is required'))

        capability = capabilities.from_request(
            request.get('volume_capability'))
        if not capabilities.is_valid_capability(capability):
            raise exception.InvalidVolumeCapability(
                reason=_('only mount access with a single node writer is '
                         'supported'))

        vdi_id = request.get('volume_id')
        if not vdi_id:
            raise exception.InvalidArgument(reason=_('Volume ID is required'))

        with common.volume_lock(vdi_id):
            vbd = self._ensure_attached(
                vdi_id, vm_id, cancel_event=cancel_event, timeout=timeout)

        return {'publish_context': common.publish_context_from_vbd(vbd)}

    def _ensure_attached(self, vdi_id, vm_id, cancel_event=None,
                         timeout=None):
        vdi = self.client.get_vdi(vdi_id)
        vm = self.client.get_vm(vm_id)
        if vdi.pool_id != vm.pool_id:
            LOG.error('Cannot attach VDI %(vdi)s from pool %(vdi_pool)s to '
                      'VM %(vm)s in pool %(vm_pool)s',
                      {'vdi': vdi_id, 'vdi_pool': vdi.pool_id,
                       'vm': vm_id, 'vm_pool': vm.pool_id})
            raise exception.PoolMismatch(vdi=vdi_id, vdi_pool=vdi.pool_id,
                                         vm=vm_id, vm_pool=vm.pool_id)

        node_vbd = None
        for vbd in self.client.list_vbds_for_vdi(vdi_id):
            if vbd.attached and vbd.vm_id != vm_id:
                LOG.error('VDI %(vdi)s is already attached to VM %(vm)s',
                          {'vdi': vdi_id, 'vm': vbd.vm_id})
                raise exception.VolumeAttachedElsewhere(vdi=vdi_id,
                                                        vm=vbd.vm_id)
            if vbd.vm_id == vm_id:
                node_vbd = vbd

        if node_vbd is None:
            LOG.debug('Attaching VDI %(vdi)s to VM %(vm)s',
                      {'vdi': vdi_id, 'vm': vm_id})
            return self.client.attach_vdi_to_vm(
                vdi_id, vm_id, timeout=timeout, cancel_event=cancel_event)

        if node_vbd.attached and node_vbd.device:
            LOG.debug('VDI %(vdi)s already attached to VM %(vm)s by VBD '
                      '%(vbd)s', {'vdi': vdi_id, 'vm': vm_id,
                                  'vbd': node_vbd.id})
            return node_vbd

        # The VDI is already added to the VM, it only has to be plugged.
        if not node_vbd.attached:
            self.client.connect_vbd(node_vbd.id)
        return self.client.wait_for_vdi_attached(
            vdi_id, vm_id, timeout=timeout, cancel_event=cancel_event)

    def unpublish_volume(self, request):
        """Disconnect the VBD of the VDI on the node VM.

        A missing or already disconnected VBD is not an error. The VBD is
        kept so a later publish only has to connect it again.
        """
        vm_id = request.get('node_id')
        if not vm_id:
            raise exception.InvalidArgument(reason=_('Node ID is required'))

        vdi_id = request.get('volume_id')
        if not vdi_id:
            raise exception.InvalidArgument(reason=_('Volume ID is required'))

        with common.volume_lock(vdi_id):
            vbd = self.client.get_vbd(vdi_id, vm_id)
            if vbd is None:
                LOG.info('No VBD for VDI %(vdi)s on VM %(vm)s, nothing to '
                         'detach', {'vdi': vdi_id, 'vm': vm_id})
            elif not vbd.attached:
                LOG.debug('VBD %s is already disconnected', vbd.id)
            else:
                self.client.disconnect_vbd(vbd.id)
                LOG.debug('VBD %(vbd)s disconnected from VM %(vm)s',
                          {'vbd': vbd.id, 'vm': vm_id})
        return {}

    def get_volume(self, request):
        vdi_id = request.get('volume_id')
        if not vdi_id:
            raise exception.InvalidArgument(reason=_('Volume ID is required'))

        try:
            vdi = self.client.get_vdi(vdi_id)
        except exception.VolumeNotFound as ex:
            raise exception.NotFound(reason=ex.format_message())

        published = [vbd.vm_id for vbd in self.client.list_vbds_for_vdi(vdi_id)
                     if vbd.attached]
        return {
            'volume': {
                'volume_id': vdi.id,
                'capacity_bytes': vdi.size,
                'accessible_topology': [
                    {'segments': {common.TOPOLOGY_POOL_ID: vdi.pool_id}},
                ],
            },
            'status': {
                'published_node_ids': published,
            },
        }
