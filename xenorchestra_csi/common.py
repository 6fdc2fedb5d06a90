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
import os

from oslo_concurrency import lockutils
from oslo_config import cfg

CONF = cfg.CONF

# Keys of the publish context handed from ControllerPublishVolume to
# NodeStageVolume.
PUBLISH_CONTEXT_DEVICE = 'device'
PUBLISH_CONTEXT_VBD = 'vbd'

# Volume context key holding a source path for NodePublishVolume when no
# staging path is given.
VOLUME_CONTEXT_SOURCE = 'diskMount'

TOPOLOGY_POOL_ID = 'topology.k8s.xenorchestra/pool_id'
TOPOLOGY_HOST_ID = 'topology.k8s.xenorchestra/host_id'

LOCK_PREFIX = 'xo-csi-'


def publish_context_from_vbd(vbd):
    return {
        PUBLISH_CONTEXT_DEVICE: vbd.device,
        PUBLISH_CONTEXT_VBD: vbd.id,
    }


def device_path(device):
    """Return the /dev path of a device name as reported by the VBD."""
    return os.path.join('/dev', device)


def volume_lock(volume_id):
    """Serialize the attach/detach decisions taken for one volume."""
    return lockutils.lock(
        'volume-{}'.format(volume_id), lock_file_prefix=LOCK_PREFIX,
        external=CONF.csi.external_locks)


def path_lock(path):
    """Serialize the mount decisions taken for one node path."""
    return lockutils.lock(
        'path-{}'.format(os.path.normpath(path)),
        lock_file_prefix=LOCK_PREFIX, external=CONF.csi.external_locks)
