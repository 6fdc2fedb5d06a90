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

"""Xen Orchestra CSI driver.

The driver ties together the identity, controller and node services with
the Xen Orchestra client and the local mounter they operate on.
"""

from oslo_config import cfg
from oslo_log import log as logging

from xenorchestra_csi import controller
from xenorchestra_csi import exception
from xenorchestra_csi import identity
from xenorchestra_csi import mount
from xenorchestra_csi import node
from xenorchestra_csi import node_metadata
from xenorchestra_csi import xoclient
from xenorchestra_csi.i18n import _

CONF = cfg.CONF
LOG = logging.getLogger(__name__)


class XenOrchestraCSIDriver(object):
    """The CSI identity, controller and node services of one plugin."""

    def __init__(self, name, version, client, mounter, metadata_getter):
        self.identity = identity.IdentityService(name, version)
        self.controller = controller.ControllerService(client)
        self.node = node.NodeService(mounter, metadata_getter)

    @classmethod
    def from_conf(cls, conf=CONF):
        """Build the driver from the [csi] and [xenorchestra] options."""
        if not conf.csi.driver_name:
            raise exception.PluginMisconfigured(
                reason=_('no driver name provided'))
        if not conf.csi.endpoint:
            raise exception.PluginMisconfigured(
                reason=_('no driver endpoint provided'))

        client = xoclient.XoClient.from_conf(conf)
        mounter = mount.SafeMounter(root_helper=conf.csi.root_helper)
        if conf.csi.node_metadata_source == 'dmi':
            metadata_getter = node_metadata.NodeMetadataFromDmi(
                host_id=conf.csi.host_id, pool_id=conf.csi.pool_id)
        else:
            metadata_getter = node_metadata.NodeMetadataFromXoClient(client)

        LOG.info('Driver: %s', conf.csi.driver_name)
        LOG.info('Version: %s', conf.csi.driver_version)
        return cls(conf.csi.driver_name, conf.csi.driver_version, client,
                   mounter, metadata_getter)
