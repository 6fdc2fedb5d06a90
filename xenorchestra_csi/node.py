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

"""CSI node service.

A volume is mounted once per node at its staging path, and every workload
gets a bind mount of the staging path at its own target path. The mount
table is the only state: it is re-read on every call.
"""

import os

from oslo_config import cfg
from oslo_log import log as logging
from oslo_utils import fileutils

from xenorchestra_csi import capabilities
from xenorchestra_csi import common
from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

CONF = cfg.CONF
LOG = logging.getLogger(__name__)


def _require(request, field, message):
    value = request.get(field)
    if not value:
        raise exception.InvalidArgument(reason=message)
    return value


def _mount_capability(request):
    capability = capabilities.from_request(request.get('volume_capability'))
    if capability is None:
        raise exception.InvalidArgument(
            reason=_('Volume capability missing in request'))
    if capability.access_type != capabilities.ACCESS_TYPE_MOUNT:
        raise exception.InvalidVolumeCapability(
            reason=_('only mount volume capability is supported'))
    return capability


class NodeService(object):
    """Stages and publishes attached volumes on this node."""

    capabilities = ('STAGE_UNSTAGE_VOLUME',)

    def __init__(self, mounter, node_metadata):
        self.mounter = mounter
        self.node_metadata = node_metadata

    def get_capabilities(self, request):
        return {
            'capabilities': [{'rpc': {'type': rpc}}
                             for rpc in self.capabilities],
        }

    def get_info(self, request):
        metadata = self.node_metadata.get_node_metadata()
        return {
            'node_id': metadata.node_id,
            'accessible_topology': {
                'segments': {
                    common.TOPOLOGY_POOL_ID: metadata.pool_id,
                    common.TOPOLOGY_HOST_ID: metadata.host_id,
                },
            },
        }

    def stage_volume(self, request):
        """Format if needed and mount the attached device at the staging path.

        The device comes from the publish context of ControllerPublishVolume.
        Staging the same device again is a no-op. A different device already
        mounted at the staging path is refused rather than replaced.
        """
        _require(request, 'volume_id', _('Volume ID missing in request'))
        staging_path = _require(request, 'staging_target_path',
                                _('Staging target path missing in request'))
        capability = _mount_capability(request)
        fs_type = capability.fs_type or CONF.csi.default_fs_type

        publish_context = request.get('publish_context') or {}
        device = publish_context.get(common.PUBLISH_CONTEXT_DEVICE)
        if not device:
            raise exception.InvalidArgument(
                reason=_('device is not set in the publish context'))
        device_path = common.device_path(device)

        with common.path_lock(staging_path):
            current, _refs = self.mounter.get_device_name_from_mount(
                staging_path)
            LOG.debug('Staging %(device)s at %(path)s, currently mounted: '
                      '%(current)s', {'device': device_path,
                                      'path': staging_path,
                                      'current': current or None})
            if current:
                if os.path.realpath(current) == os.path.realpath(device_path):
                    LOG.info('%(device)s is already staged at %(path)s',
                             {'device': device_path, 'path': staging_path})
                    return {}
                raise exception.StagingPathInUse(
                    path=staging_path, current=current, device=device_path)

            self.mounter.format_and_mount(
                device_path, staging_path, fs_type, capability.mount_flags)

        LOG.info('Staged %(device)s at %(path)s as %(fs_type)s',
                 {'device': device_path, 'path': staging_path,
                  'fs_type': fs_type})
        return {}

    def unstage_volume(self, request):
        """Unmount the staging path once nothing else uses the device.

        A reference count above one means a bind mount of the staging path
        is still in place, unmounting would pull the volume from under it.
        """
        _require(request, 'volume_id', _('Volume ID missing in request'))
        staging_path = _require(request, 'staging_target_path',
                                _('Staging target path missing in request'))

        with common.path_lock(staging_path):
            device, ref_count = self.mounter.get_device_name_from_mount(
                staging_path)
            if ref_count < 1:
                LOG.debug('%s is not mounted, nothing to unstage',
                          staging_path)
                return {}
            if ref_count > 1:
                LOG.info('%(path)s is still in use (%(count)d references '
                         'to %(device)s), skipping unmount',
                         {'path': staging_path, 'count': ref_count,
                          'device': device})
                return {}

            self.mounter.unmount(staging_path)

        LOG.info('Unstaged %(device)s from %(path)s',
                 {'device': device, 'path': staging_path})
        return {}

    def publish_volume(self, request):
        """Bind mount the staged volume at the workload target path."""
        capability = capabilities.from_request(
            request.get('volume_capability'))
        if capability is None:
            raise exception.InvalidArgument(
                reason=_('Volume capability missing in request'))
        if not capabilities.is_valid_volume_capabilities([capability]):
            raise exception.InvalidVolumeCapability(
                reason=_('only mount access with a single node writer is '
                         'supported'))

        _require(request, 'volume_id', _('Volume ID missing in request'))
        target_path = _require(request, 'target_path',
                               _('Target path missing in request'))

        source = request.get('staging_target_path')
        if not source:
            volume_context = request.get('volume_context') or {}
            source = volume_context.get(common.VOLUME_CONTEXT_SOURCE)
        if not source:
            raise exception.InvalidArgument(
                reason=_('source path is required in volume context or '
                         'staging target path'))

        fs_type = capability.fs_type or CONF.csi.default_fs_type
        options = []
        if request.get('readonly'):
            options.append('ro')
        options.append('bind')

        with common.path_lock(target_path):
            try:
                fileutils.ensure_tree(target_path)
            except OSError as ex:
                raise exception.MountError(
                    reason=_('Failed to create target path {path}: '
                             '{ex}').format(path=target_path, ex=ex))

            if self.mounter.is_mount_point(target_path):
                LOG.debug('%s is already mounted', target_path)
                return {}

            self.mounter.mount(source, target_path, fs_type, options)

        LOG.info('Published %(source)s at %(target)s',
                 {'source': source, 'target': target_path})
        return {}

    def unpublish_volume(self, request):
        _require(request, 'volume_id', _('Volume ID missing in request'))
        target_path = _require(request, 'target_path',
                               _('Target path missing in request'))

        with common.path_lock(target_path):
            self.mounter.unmount(target_path)

        LOG.info('Volume %s has been unpublished', target_path)
        return {}
