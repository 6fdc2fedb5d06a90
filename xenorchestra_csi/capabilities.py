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

"""Volume capability parsing and validation.

Capabilities arrive as the mapping rendering of a CSI ``VolumeCapability``
message, e.g.::

    {'mount': {'fs_type': 'ext4', 'mount_flags': ['noatime']},
     'access_mode': {'mode': 'SINGLE_NODE_WRITER'}}
"""

import collections

from oslo_log import log as logging

LOG = logging.getLogger(__name__)

ACCESS_TYPE_MOUNT = 'mount'
ACCESS_TYPE_BLOCK = 'block'

# Ordered as the csi.v1 VolumeCapability.AccessMode.Mode enum.
ACCESS_MODES = (
    'UNKNOWN',
    'SINGLE_NODE_WRITER',
    'SINGLE_NODE_READER_ONLY',
    'MULTI_NODE_READER_ONLY',
    'MULTI_NODE_SINGLE_WRITER',
    'MULTI_NODE_MULTI_WRITER',
    'SINGLE_NODE_SINGLE_WRITER',
    'SINGLE_NODE_MULTI_WRITER',
)
SINGLE_NODE_WRITER = 'SINGLE_NODE_WRITER'

VolumeCapability = collections.namedtuple('VolumeCapability', [
    'access_type', 'fs_type', 'mount_flags', 'access_mode'])


def _access_mode_name(mode):
    if isinstance(mode, int):
        try:
            return ACCESS_MODES[mode]
        except IndexError:
            return 'UNKNOWN'
    return mode or 'UNKNOWN'


def from_request(capability):
    """Build a VolumeCapability from its request mapping.

    :param capability: the ``volume_capability`` mapping of a request
    :returns: a VolumeCapability, or None when no capability was sent
    """
    if not capability:
        return None

    if ACCESS_TYPE_BLOCK in capability:
        access_type = ACCESS_TYPE_BLOCK
    elif ACCESS_TYPE_MOUNT in capability:
        access_type = ACCESS_TYPE_MOUNT
    else:
        access_type = None

    mount = capability.get(ACCESS_TYPE_MOUNT) or {}
    access_mode = (capability.get('access_mode') or {}).get('mode')
    return VolumeCapability(
        access_type=access_type,
        fs_type=mount.get('fs_type', ''),
        mount_flags=list(mount.get('mount_flags', [])),
        access_mode=_access_mode_name(access_mode))


def is_valid_capability(capability):
    """Only mount access with a single node writer is supported."""
    if capability is None:
        return False

    if capability.access_type == ACCESS_TYPE_BLOCK:
        LOG.debug('Block access type is not supported')
        return False
    if capability.access_type != ACCESS_TYPE_MOUNT:
        LOG.debug('Unknown access type %s', capability.access_type)
        return False

    if capability.access_mode != SINGLE_NODE_WRITER:
        LOG.debug('Access mode %s is not supported', capability.access_mode)
        return False
    return True


def is_valid_volume_capabilities(capabilities):
    if not capabilities:
        return False
    return all(is_valid_capability(c) for c in capabilities)
