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

import signal

import mock
from oslo_config import cfg

from xenorchestra_csi.cmd import csi_driver
from xenorchestra_csi import conf
from xenorchestra_csi import exception
from xenorchestra_csi.tests import base


class ParseArgsTest(base.TestCase):

    def setUp(self):
        super(ParseArgsTest, self).setUp()
        self.config = cfg.ConfigOpts()
        conf.register_opts(self.config)

    def test_cli_flags_override_options(self):
        csi_driver.parse_args(
            ['xenorchestra-csi-driver', '--driver-name', 'csi.example.org',
             '--endpoint', 'unix:///csi/csi.sock'],
            default_config_files=[], config=self.config)

        self.assertEqual('unix:///csi/csi.sock', self.config.csi.endpoint)
        self.assertEqual('csi.example.org', self.config.csi.driver_name)

    def test_defaults(self):
        csi_driver.parse_args(['xenorchestra-csi-driver'],
                              default_config_files=[], config=self.config)

        self.assertEqual('csi.xenorchestra.vates.tech',
                         self.config.csi.driver_name)
        self.assertEqual('unix:///tmp/csi.sock', self.config.csi.endpoint)


class MainTest(base.TestCase):

    def setUp(self):
        super(MainTest, self).setUp()
        self.parse_args = self.patch('xenorchestra_csi.cmd.csi_driver.'
                                     'parse_args')
        self.patch('oslo_log.log.setup')
        self.from_conf = self.patch(
            'xenorchestra_csi.driver.XenOrchestraCSIDriver.from_conf')
        self.servicer = self.patch('xenorchestra_csi.servicer.CSIServicer')
        self.server = self.patch(
            'xenorchestra_csi.server.NonBlockingGRPCServer')
        self.signal = self.patch('signal.signal')
        self.server.return_value.wait.return_value = True

    def patch(self, target):
        patcher = mock.patch(target)
        self.addCleanup(patcher.stop)
        return patcher.start()

    def test_main(self):
        csi_driver.main()

        self.servicer.assert_called_once_with(self.from_conf.return_value)
        grpc_server = self.server.return_value
        grpc_server.start.assert_called_once_with(
            csi_driver.CONF.csi.endpoint,
            self.servicer.return_value.generic_handlers.return_value)
        self.assertEqual(
            {signal.SIGTERM, signal.SIGINT},
            {call[0][0] for call in self.signal.call_args_list})

    def test_main_misconfigured(self):
        self.from_conf.side_effect = exception.PluginMisconfigured(
            reason='no driver endpoint provided')

        self.assertRaises(SystemExit, csi_driver.main)
        self.assertFalse(self.server.called)

    def test_signal_handler_stops_gracefully(self):
        csi_driver.main()
        handler = self.signal.call_args_list[0][0][1]

        with mock.patch('threading.Thread') as thread:
            handler(signal.SIGTERM, None)

        thread.assert_called_once_with(
            target=self.server.return_value.graceful_stop)
        thread.return_value.start.assert_called_once_with()
