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

"""Identity and topology of the node the plugin runs on."""

import abc
import collections

from oslo_log import log as logging

from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

LOG = logging.getLogger(__name__)

DMI_PRODUCT_UUID = '/sys/class/dmi/id/product_uuid'

NodeMetadata = collections.namedtuple('NodeMetadata', [
    'node_id', 'host_id', 'pool_id'])


def get_node_id_from_dmi(path=DMI_PRODUCT_UUID):
    """Return the VM UUID of this node as seen by Xen Orchestra.

    Xen exposes the VM UUID as the DMI product UUID of the guest.
    """
    try:
        with open(path) as f:
            product_uuid = f.read().strip()
    except (IOError, OSError) as ex:
        raise exception.NodeMetadataError(
            reason=_('failed to read product UUID: {}').format(ex))

    if not product_uuid:
        raise exception.NodeMetadataError(
            reason=_('product UUID is empty'))
    return product_uuid.lower()


class NodeMetadataGetter(object, metaclass=abc.ABCMeta):

    @abc.abstractmethod
    def get_node_metadata(self):
        """Return the NodeMetadata of this node."""


class NodeMetadataFromDmi(NodeMetadataGetter):
    """Node id from DMI, host and pool from the configuration."""

    def __init__(self, host_id=None, pool_id=None, dmi_path=DMI_PRODUCT_UUID):
        self.host_id = host_id or ''
        self.pool_id = pool_id or ''
        self.dmi_path = dmi_path

    def get_node_metadata(self):
        return NodeMetadata(node_id=get_node_id_from_dmi(self.dmi_path),
                            host_id=self.host_id,
                            pool_id=self.pool_id)


class NodeMetadataFromXoClient(NodeMetadataGetter):
    """Node id from DMI, host and pool from the Xen Orchestra VM record."""

    def __init__(self, client, dmi_path=DMI_PRODUCT_UUID):
        self.client = client
        self.dmi_path = dmi_path

    def get_node_metadata(self):
        node_id = get_node_id_from_dmi(self.dmi_path)
        try:
            vm = self.client.get_vm(node_id)
        except exception.HypervisorError as ex:
            raise exception.NodeMetadataError(reason=ex.format_message())
        LOG.debug('Node %(node)s runs on host %(host)s in pool %(pool)s',
                  {'node': vm.id, 'host': vm.host_id, 'pool': vm.pool_id})
        return NodeMetadata(node_id=vm.id,
                            host_id=vm.host_id,
                            pool_id=vm.pool_id)
