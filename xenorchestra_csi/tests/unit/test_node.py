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

import ddt
import fixtures
import grpc
import mock

from xenorchestra_csi import exception
from xenorchestra_csi import node
from xenorchestra_csi import node_metadata
from xenorchestra_csi.tests import base
from xenorchestra_csi.tests.unit import fakes

MOUNT_CAPABILITY = {
    'mount': {},
    'access_mode': {'mode': 'SINGLE_NODE_WRITER'},
}


class NodeTestCase(base.TestCase):

    def setUp(self):
        super(NodeTestCase, self).setUp()
        self.mounter = fakes.FakeMounter()
        self.metadata = mock.Mock(spec=node_metadata.NodeMetadataGetter)
        self.service = node.NodeService(self.mounter, self.metadata)


@ddt.ddt
class NodeStageVolumeTest(NodeTestCase):

    def stage_request(self, device='xvdb', path='/stage/v1',
                      capability=MOUNT_CAPABILITY):
        return {
            'volume_id': 'vdi-1',
            'staging_target_path': path,
            'volume_capability': capability,
            'publish_context': {'device': device, 'vbd': 'vbd-1'},
        }

    def test_stage_formats_and_mounts(self):
        self.assertEqual({},
                         self.service.stage_volume(self.stage_request()))

        self.assertEqual(
            [('format_and_mount', '/dev/xvdb', '/stage/v1', 'ext4', [])],
            self.mounter.calls)

    def test_stage_default_fs_type(self):
        self.flags(default_fs_type='xfs', group='csi')

        self.service.stage_volume(self.stage_request())

        self.assertEqual('xfs', self.mounter.calls[0][3])

    def test_stage_requested_fs_type_and_flags(self):
        capability = {
            'mount': {'fs_type': 'xfs', 'mount_flags': ['noatime']},
            'access_mode': {'mode': 'SINGLE_NODE_WRITER'},
        }

        self.service.stage_volume(self.stage_request(capability=capability))

        self.assertEqual(
            [('format_and_mount', '/dev/xvdb', '/stage/v1', 'xfs',
              ['noatime'])],
            self.mounter.calls)

    def test_stage_same_device_is_noop(self):
        self.mounter.add_mount('/dev/xvdb', '/stage/v1')

        self.assertEqual({},
                         self.service.stage_volume(self.stage_request()))

        self.assertEqual([], self.mounter.calls)

    def test_stage_other_device_mounted(self):
        self.mounter.add_mount('/dev/xvdc', '/stage/v1')

        ex = self.assertRaises(exception.StagingPathInUse,
                               self.service.stage_volume,
                               self.stage_request())

        self.assertEqual(grpc.StatusCode.ALREADY_EXISTS, ex.code)
        self.assertEqual([], self.mounter.calls)

    @ddt.data('volume_id', 'staging_target_path', 'volume_capability',
              'publish_context')
    def test_stage_missing_field(self, field):
        request = self.stage_request()
        del request[field]

        self.assertRaises(exception.InvalidArgument,
                          self.service.stage_volume, request)
        self.assertEqual([], self.mounter.calls)

    def test_stage_block_capability(self):
        capability = {'block': {},
                      'access_mode': {'mode': 'SINGLE_NODE_WRITER'}}

        self.assertRaises(exception.InvalidVolumeCapability,
                          self.service.stage_volume,
                          self.stage_request(capability=capability))

    def test_stage_mount_failure(self):
        self.mounter.format_and_mount = mock.Mock(
            side_effect=exception.MountError(reason='boom'))

        ex = self.assertRaises(exception.MountError,
                               self.service.stage_volume,
                               self.stage_request())
        self.assertEqual(grpc.StatusCode.INTERNAL, ex.code)


@ddt.ddt
class NodeUnstageVolumeTest(NodeTestCase):

    request = {'volume_id': 'vdi-1', 'staging_target_path': '/stage/v1'}

    def test_unstage_single_reference(self):
        self.mounter.add_mount('/dev/xvdb', '/stage/v1')

        self.assertEqual({}, self.service.unstage_volume(self.request))

        self.assertEqual([('unmount', '/stage/v1')], self.mounter.calls)
        self.assertEqual([], self.mounter.mounts)

    def test_unstage_not_mounted(self):
        self.assertEqual({}, self.service.unstage_volume(self.request))
        self.assertEqual([], self.mounter.calls)

    def test_unstage_still_referenced(self):
        self.mounter.add_mount('/dev/xvdb', '/stage/v1')
        self.mounter.add_mount('/dev/xvdb', '/pods/p1/volume')

        self.assertEqual({}, self.service.unstage_volume(self.request))

        self.assertEqual([], self.mounter.calls)
        self.assertEqual(2, len(self.mounter.mounts))

    @ddt.data('volume_id', 'staging_target_path')
    def test_unstage_missing_field(self, field):
        request = dict(self.request)
        del request[field]

        self.assertRaises(exception.InvalidArgument,
                          self.service.unstage_volume, request)


@ddt.ddt
class NodePublishVolumeTest(NodeTestCase):

    def setUp(self):
        super(NodePublishVolumeTest, self).setUp()
        self.target = os.path.join(
            self.useFixture(fixtures.TempDir()).path, 'pods', 'p1')
        self.mounter.add_mount('/dev/xvdb', '/stage/v1')

    def publish_request(self, **kwargs):
        request = {
            'volume_id': 'vdi-1',
            'staging_target_path': '/stage/v1',
            'target_path': self.target,
            'volume_capability': MOUNT_CAPABILITY,
        }
        request.update(kwargs)
        return request

    def test_publish_bind_mounts_staging_path(self):
        self.assertEqual({},
                         self.service.publish_volume(self.publish_request()))

        self.assertTrue(os.path.isdir(self.target))
        self.assertEqual(
            [('mount', '/stage/v1', self.target, 'ext4', ['bind'])],
            self.mounter.calls)
        self.assertEqual(('/dev/xvdb', 2),
                         self.mounter.get_device_name_from_mount(
                             '/stage/v1'))

    def test_publish_readonly(self):
        self.service.publish_volume(self.publish_request(readonly=True))

        self.assertEqual(['ro', 'bind'], self.mounter.calls[0][4])

    def test_publish_from_volume_context(self):
        request = self.publish_request(
            volume_context={'diskMount': '/mnt/disk'})
        del request['staging_target_path']

        self.service.publish_volume(request)

        self.assertEqual('/mnt/disk', self.mounter.calls[0][1])

    def test_publish_without_source(self):
        request = self.publish_request()
        del request['staging_target_path']

        self.assertRaises(exception.InvalidArgument,
                          self.service.publish_volume, request)

    def test_publish_already_mounted(self):
        self.service.publish_volume(self.publish_request())
        self.service.publish_volume(self.publish_request())

        self.assertEqual(1, len(self.mounter.calls))

    @ddt.data('volume_id', 'target_path', 'volume_capability')
    def test_publish_missing_field(self, field):
        request = self.publish_request()
        del request[field]

        self.assertRaises(exception.InvalidArgument,
                          self.service.publish_volume, request)
        self.assertEqual([], self.mounter.calls)

    def test_publish_unsupported_access_mode(self):
        capability = {'mount': {},
                      'access_mode': {'mode': 'MULTI_NODE_READER_ONLY'}}

        self.assertRaises(
            exception.InvalidVolumeCapability,
            self.service.publish_volume,
            self.publish_request(volume_capability=capability))

    @mock.patch('oslo_utils.fileutils.ensure_tree')
    def test_publish_target_creation_failure(self, ensure_tree):
        ensure_tree.side_effect = OSError(13, 'Permission denied')

        self.assertRaises(exception.MountError,
                          self.service.publish_volume,
                          self.publish_request())
        self.assertEqual([], self.mounter.calls)


class NodeUnpublishVolumeTest(NodeTestCase):

    request = {'volume_id': 'vdi-1', 'target_path': '/pods/p1/volume'}

    def test_unpublish(self):
        self.mounter.add_mount('/dev/xvdb', '/pods/p1/volume')

        self.assertEqual({}, self.service.unpublish_volume(self.request))

        self.assertEqual([('unmount', '/pods/p1/volume')],
                         self.mounter.calls)

    def test_unpublish_missing_target(self):
        self.assertRaises(exception.InvalidArgument,
                          self.service.unpublish_volume,
                          {'volume_id': 'vdi-1'})

    def test_unpublish_then_unstage(self):
        self.mounter.add_mount('/dev/xvdb', '/stage/v1')
        self.mounter.add_mount('/dev/xvdb', '/pods/p1/volume')

        self.service.unpublish_volume(self.request)
        self.service.unstage_volume({'volume_id': 'vdi-1',
                                     'staging_target_path': '/stage/v1'})

        self.assertEqual([('unmount', '/pods/p1/volume'),
                          ('unmount', '/stage/v1')], self.mounter.calls)


class NodeServiceTest(NodeTestCase):

    def test_get_capabilities(self):
        self.assertEqual(
            {'capabilities': [{'rpc': {'type': 'STAGE_UNSTAGE_VOLUME'}}]},
            self.service.get_capabilities({}))

    def test_get_info(self):
        self.metadata.get_node_metadata.return_value = (
            node_metadata.NodeMetadata(node_id='vm-1',
                                       host_id=fakes.HOST_ID,
                                       pool_id=fakes.POOL_ID))

        self.assertEqual({
            'node_id': 'vm-1',
            'accessible_topology': {
                'segments': {
                    'topology.k8s.xenorchestra/pool_id': 'pool-1',
                    'topology.k8s.xenorchestra/host_id': 'host-1',
                },
            },
        }, self.service.get_info({}))

    def test_get_info_failure(self):
        self.metadata.get_node_metadata.side_effect = (
            exception.NodeMetadataError(reason='no uuid'))

        self.assertRaises(exception.NodeMetadataError,
                          self.service.get_info, {})
