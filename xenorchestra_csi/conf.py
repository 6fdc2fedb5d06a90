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

from oslo_config import cfg

from xenorchestra_csi import version

CONF = cfg.CONF

DEFAULT_DRIVER_NAME = 'csi.xenorchestra.vates.tech'

csi_group = cfg.OptGroup(
    'csi',
    title='CSI driver options',
    help='Options for the CSI identity, controller and node services.')

csi_opts = [
    cfg.StrOpt('driver_name',
               default=DEFAULT_DRIVER_NAME,
               help='Name reported by GetPluginInfo'),
    cfg.StrOpt('driver_version',
               default=version.driver_version,
               help='Version reported by GetPluginInfo'),
    cfg.StrOpt('endpoint',
               default='unix:///tmp/csi.sock',
               help='CSI endpoint, only unix:// sockets are supported'),
    cfg.StrOpt('default_fs_type',
               default='ext4',
               help='Filesystem used when the volume capability does not '
                    'request one'),
    cfg.IntOpt('workers',
               default=10,
               min=1,
               help='Number of threads serving gRPC requests'),
    cfg.IntOpt('shutdown_grace_period',
               default=30,
               min=0,
               help='Seconds given to in-flight RPCs to complete on a '
                    'graceful stop'),
    cfg.BoolOpt('external_locks',
                default=False,
                help='Use file locks under [oslo_concurrency] lock_path '
                     'for the per volume and per path locks'),
    cfg.StrOpt('root_helper',
               default='',
               help='Command prefix used to run mount utilities as root. '
                    'Leave empty when the plugin already runs privileged'),
    cfg.StrOpt('proto_module',
               default='csi_pb2',
               help='Python module generated from the CSI csi.proto'),
    cfg.StrOpt('node_metadata_source',
               default='xenorchestra',
               choices=['xenorchestra', 'dmi'],
               help='Where NodeGetInfo reads the node topology from'),
    cfg.StrOpt('host_id',
               help='Host identifier reported when node_metadata_source '
                    'is dmi'),
    cfg.StrOpt('pool_id',
               help='Pool identifier reported when node_metadata_source '
                    'is dmi'),
]

xo_group = cfg.OptGroup(
    'xenorchestra',
    title='Xen Orchestra options',
    help='Connection to the Xen Orchestra API.')

xo_opts = [
    cfg.URIOpt('url',
               schemes=['http', 'https'],
               help='Base URL of the Xen Orchestra server'),
    cfg.StrOpt('token',
               secret=True,
               help='Xen Orchestra authentication token'),
    cfg.BoolOpt('insecure',
                default=False,
                help='Skip TLS certificate verification'),
    cfg.IntOpt('timeout',
               default=30,
               min=1,
               help='HTTP timeout in seconds for Xen Orchestra calls'),
    cfg.IntOpt('attach_timeout',
               default=120,
               min=1,
               help='Seconds to wait for an attached disk to be connected '
                    'and to get a device name'),
    cfg.FloatOpt('attach_poll_interval',
                 default=1.0,
                 min=0.1,
                 help='Seconds between two attachment state queries'),
]

cli_opts = [
    cfg.StrOpt('driver-name',
               dest='driver_name',
               help='Driver name, overrides [csi] driver_name'),
    cfg.StrOpt('endpoint',
               help='CSI endpoint, overrides [csi] endpoint'),
]


def register_opts(conf):
    conf.register_group(csi_group)
    conf.register_opts(csi_opts, group=csi_group)
    conf.register_group(xo_group)
    conf.register_opts(xo_opts, group=xo_group)


def register_cli_opts(conf):
    conf.register_cli_opts(cli_opts)


def list_opts():
    return [
        (csi_group, csi_opts),
        (xo_group, xo_opts),
    ]


register_opts(CONF)
