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

"""Exceptions raised by the Xen Orchestra CSI driver.

Every exception carries the gRPC status code it is reported with, so the
servicer can abort an RPC without knowing which component failed.
"""

import grpc
from oslo_log import log as logging

from xenorchestra_csi.i18n import _

LOG = logging.getLogger(__name__)


class CSIDriverException(Exception):
    """Base Xen Orchestra CSI driver exception.

    To correctly use this class, inherit from it and define a 'msg_fmt'
    property. That msg_fmt will get printf'd with the keyword arguments
    provided to the constructor.
    """
    msg_fmt = _("An unknown exception occurred.")
    code = grpc.StatusCode.INTERNAL

    def __init__(self, message=None, **kwargs):
        self.kwargs = kwargs

        if not message:
            try:
                message = self.msg_fmt % kwargs
            except Exception:
                # kwargs doesn't match a variable in the message
                LOG.exception('Exception in string format operation, '
                              'kwargs: %s', kwargs)
                message = self.msg_fmt

        self.message = message
        super(CSIDriverException, self).__init__(message)

    def format_message(self):
        return self.args[0]


class InvalidArgument(CSIDriverException):
    msg_fmt = _("%(reason)s")
    code = grpc.StatusCode.INVALID_ARGUMENT


class InvalidVolumeCapability(InvalidArgument):
    msg_fmt = _("Invalid volume capability: %(reason)s")


class NotFound(CSIDriverException):
    msg_fmt = _("%(reason)s")
    code = grpc.StatusCode.NOT_FOUND


class Unimplemented(CSIDriverException):
    msg_fmt = _("%(method)s is not implemented")
    code = grpc.StatusCode.UNIMPLEMENTED


class PluginMisconfigured(CSIDriverException):
    msg_fmt = _("%(reason)s")
    code = grpc.StatusCode.UNAVAILABLE


class PoolMismatch(CSIDriverException):
    msg_fmt = _("Cannot attach VDI %(vdi)s from pool %(vdi_pool)s to VM "
                "%(vm)s in pool %(vm_pool)s")
    code = grpc.StatusCode.FAILED_PRECONDITION


class VolumeAttachedElsewhere(CSIDriverException):
    msg_fmt = _("VDI %(vdi)s is already attached to another VM %(vm)s")
    code = grpc.StatusCode.FAILED_PRECONDITION


class StagingPathInUse(CSIDriverException):
    msg_fmt = _("Staging path %(path)s is already used by device "
                "%(current)s, refusing to stage %(device)s")
    code = grpc.StatusCode.ALREADY_EXISTS


class HypervisorError(CSIDriverException):
    msg_fmt = _("Xen Orchestra call %(method)s failed: %(reason)s")


class VolumeNotFound(HypervisorError):
    msg_fmt = _("VDI %(vdi)s could not be found")


class NodeNotFound(HypervisorError):
    msg_fmt = _("VM %(vm)s could not be found")


class AttachTimeout(HypervisorError):
    msg_fmt = _("Timed out after %(timeout)s seconds waiting for VDI "
                "%(vdi)s to be attached to VM %(vm)s")


class AttachCancelled(HypervisorError):
    msg_fmt = _("Wait for VDI %(vdi)s to be attached to VM %(vm)s was "
                "cancelled")


class MountError(CSIDriverException):
    msg_fmt = _("%(reason)s")


class NodeMetadataError(CSIDriverException):
    msg_fmt = _("Failed to fetch node metadata: %(reason)s")
