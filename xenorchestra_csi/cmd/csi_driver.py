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

"""Starter script for the Xen Orchestra CSI driver."""

import signal
import sys
import threading

from oslo_config import cfg
from oslo_log import log as logging

from xenorchestra_csi import conf
from xenorchestra_csi import driver
from xenorchestra_csi import exception
from xenorchestra_csi import server
from xenorchestra_csi import servicer
from xenorchestra_csi import version

CONF = cfg.CONF
LOG = logging.getLogger(__name__)

PROJECT = 'xenorchestra-csi'


def parse_args(argv, default_config_files=None, config=CONF):
    conf.register_cli_opts(config)
    logging.register_options(config)
    config(argv[1:],
           project=PROJECT,
           version=version.version_info_string(),
           default_config_files=default_config_files)

    # Command line flags win over the [csi] section.
    for name in ('driver_name', 'endpoint'):
        value = getattr(config, name)
        if value:
            config.set_override(name, value, group='csi')


def _install_signal_handlers(grpc_server):
    def handler(signum, frame):
        LOG.info('Caught signal %s, stopping', signum)
        # The stop waits for in-flight RPCs, keep it off the signal frame.
        threading.Thread(target=grpc_server.graceful_stop).start()

    signal.signal(signal.SIGTERM, handler)
    signal.signal(signal.SIGINT, handler)


def main():
    parse_args(sys.argv)
    logging.setup(CONF, PROJECT)
    LOG.info('Starting %s', version.version_string())

    try:
        csi_driver = driver.XenOrchestraCSIDriver.from_conf(CONF)
        handlers = servicer.CSIServicer(csi_driver).generic_handlers()
        grpc_server = server.NonBlockingGRPCServer(
            workers=CONF.csi.workers,
            grace_period=CONF.csi.shutdown_grace_period)
        grpc_server.start(CONF.csi.endpoint, handlers)
    except exception.CSIDriverException as ex:
        LOG.error('Failed to start driver: %s', ex.format_message())
        sys.exit(1)

    _install_signal_handlers(grpc_server)
    while not grpc_server.wait(1):
        pass
