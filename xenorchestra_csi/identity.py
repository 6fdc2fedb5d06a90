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

from oslo_log import log as logging

from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

LOG = logging.getLogger(__name__)


class IdentityService(object):
    """Reports the plugin name, version and readiness."""

    capabilities = ('CONTROLLER_SERVICE',)

    def __init__(self, name, version):
        self.name = name
        self.version = version

    def get_plugin_info(self, request):
        if not self.name:
            raise exception.PluginMisconfigured(
                reason=_('Driver name not configured'))
        if not self.version:
            raise exception.PluginMisconfigured(
                reason=_('Driver is missing version'))
        return {'name': self.name, 'vendor_version': self.version}

    def get_plugin_capabilities(self, request):
        LOG.debug('Using default capabilities')
        return {
            'capabilities': [{'service': {'type': service}}
                             for service in self.capabilities],
        }

    def probe(self, request):
        return {'ready': True}
