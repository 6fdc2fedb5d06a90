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

"""gRPC bindings of the CSI services.

Requests are turned into mappings keyed by the csi.proto field names and
handed to the driver services; the returned mappings are parsed back into
response messages. The message classes come from the module generated from
csi.proto, named by [csi] proto_module.
"""

import threading

from google.protobuf import json_format
import grpc
from oslo_config import cfg
from oslo_log import log as logging
from oslo_utils import importutils

from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

CONF = cfg.CONF
LOG = logging.getLogger(__name__)

IDENTITY_SERVICE = 'csi.v1.Identity'
CONTROLLER_SERVICE = 'csi.v1.Controller'
NODE_SERVICE = 'csi.v1.Node'

# (rpc name, driver service attribute, method, waits on the hypervisor)
RPCS = {
    IDENTITY_SERVICE: [
        ('GetPluginInfo', 'identity', 'get_plugin_info', False),
        ('GetPluginCapabilities', 'identity', 'get_plugin_capabilities',
         False),
        ('Probe', 'identity', 'probe', False),
    ],
    CONTROLLER_SERVICE: [
        ('ControllerPublishVolume', 'controller', 'publish_volume', True),
        ('ControllerUnpublishVolume', 'controller', 'unpublish_volume',
         False),
        ('ControllerGetCapabilities', 'controller', 'get_capabilities',
         False),
        ('ControllerGetVolume', 'controller', 'get_volume', False),
    ],
    NODE_SERVICE: [
        ('NodeStageVolume', 'node', 'stage_volume', False),
        ('NodeUnstageVolume', 'node', 'unstage_volume', False),
        ('NodePublishVolume', 'node', 'publish_volume', False),
        ('NodeUnpublishVolume', 'node', 'unpublish_volume', False),
        ('NodeGetCapabilities', 'node', 'get_capabilities', False),
        ('NodeGetInfo', 'node', 'get_info', False),
    ],
}

UNIMPLEMENTED_RPCS = {
    CONTROLLER_SERVICE: [
        'CreateVolume',
        'DeleteVolume',
        'ListVolumes',
        'CreateSnapshot',
        'DeleteSnapshot',
        'ListSnapshots',
        'GetCapacity',
        'ControllerExpandVolume',
        'ControllerModifyVolume',
        'ValidateVolumeCapabilities',
    ],
    NODE_SERVICE: [
        'NodeGetVolumeStats',
        'NodeExpandVolume',
    ],
}


def _loggable(request):
    """Drop the secrets of a request mapping before logging it."""
    return {k: v for k, v in request.items() if k != 'secrets'}


class CSIServicer(object):
    """Exposes a XenOrchestraCSIDriver over gRPC."""

    def __init__(self, driver, proto=None):
        self.driver = driver
        self.proto = proto or importutils.import_module(
            CONF.csi.proto_module)

    def call(self, rpc, func, request, context, cancellable=False):
        """Run a driver method for an RPC and return its response mapping.

        Driver exceptions abort the RPC with their own status code, any
        other exception aborts it as INTERNAL.
        """
        LOG.debug('%(rpc)s called with %(request)s',
                  {'rpc': rpc, 'request': _loggable(request)})
        kwargs = {}
        if cancellable:
            cancel_event = threading.Event()
            context.add_callback(cancel_event.set)
            kwargs['cancel_event'] = cancel_event
            kwargs['timeout'] = context.time_remaining()

        try:
            return func(request, **kwargs)
        except exception.CSIDriverException as ex:
            LOG.error('%(rpc)s failed: %(ex)s',
                      {'rpc': rpc, 'ex': ex.format_message()})
            context.abort(ex.code, ex.format_message())
        except Exception as ex:
            LOG.exception('%s failed with an unexpected error', rpc)
            context.abort(grpc.StatusCode.INTERNAL,
                          _('{rpc} failed: {ex}').format(rpc=rpc, ex=ex))

    def _rpc_handler(self, rpc, func, cancellable):
        request_cls = getattr(self.proto, rpc + 'Request')
        response_cls = getattr(self.proto, rpc + 'Response')

        def handler(request, context):
            result = self.call(
                rpc, func,
                json_format.MessageToDict(
                    request, preserving_proto_field_name=True),
                context, cancellable=cancellable)
            return json_format.ParseDict(result, response_cls())

        return grpc.unary_unary_rpc_method_handler(
            handler,
            request_deserializer=request_cls.FromString,
            response_serializer=response_cls.SerializeToString)

    def _unimplemented_handler(self, rpc):
        request_cls = getattr(self.proto, rpc + 'Request', None)
        response_cls = getattr(self.proto, rpc + 'Response', None)
        if request_cls is None or response_cls is None:
            # Not part of this csi.proto version, gRPC answers UNIMPLEMENTED.
            return None

        def handler(request, context):
            self.call(rpc, self._unimplemented(rpc), {}, context)

        return grpc.unary_unary_rpc_method_handler(
            handler,
            request_deserializer=request_cls.FromString,
            response_serializer=response_cls.SerializeToString)

    @staticmethod
    def _unimplemented(rpc):
        def unimplemented(request):
            raise exception.Unimplemented(method=rpc)
        return unimplemented

    def method_handlers(self, service):
        handlers = {}
        for rpc, attr, method, cancellable in RPCS[service]:
            func = getattr(getattr(self.driver, attr), method)
            handlers[rpc] = self._rpc_handler(rpc, func, cancellable)
        for rpc in UNIMPLEMENTED_RPCS.get(service, []):
            handler = self._unimplemented_handler(rpc)
            if handler is not None:
                handlers[rpc] = handler
        return handlers

    def generic_handlers(self):
        """Return the gRPC handlers of the identity, controller and node
        services.
        """
        return [grpc.method_handlers_generic_handler(
                    service, self.method_handlers(service))
                for service in (IDENTITY_SERVICE, CONTROLLER_SERVICE,
                                NODE_SERVICE)]
