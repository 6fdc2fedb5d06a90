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

"""Local mount operations used by the node service."""

import abc
import collections
import errno
import os

from oslo_concurrency import processutils
from oslo_log import log as logging
from oslo_utils import excutils
from oslo_utils import fileutils
import psutil

from xenorchestra_csi import exception
from xenorchestra_csi.i18n import _

LOG = logging.getLogger(__name__)

# blkid exit code when no filesystem signature was found.
BLKID_NOT_FOUND = 2

MountPoint = collections.namedtuple('MountPoint', [
    'device', 'path', 'fs_type', 'opts'])


def list_mounts():
    """Return the mount table as a list of MountPoint, in mount order."""
    return [MountPoint(device=partition.device,
                       path=partition.mountpoint,
                       fs_type=partition.fstype,
                       opts=partition.opts.split(','))
            for partition in psutil.disk_partitions(all=True)]


class Mounter(object, metaclass=abc.ABCMeta):
    """Mount operations the CSI node service relies on."""

    @abc.abstractmethod
    def is_mount_point(self, target):
        """Return True when target is a mount point."""

    @abc.abstractmethod
    def get_device_name_from_mount(self, mount_path):
        """Find the device mounted at mount_path.

        :returns: (device, reference count), the reference count being the
                  number of mount table entries of that device. ('', 0)
                  when nothing is mounted there.
        """

    @abc.abstractmethod
    def format_and_mount(self, source, target, fs_type, options):
        """Create a filesystem on an unformatted source, then mount it."""

    @abc.abstractmethod
    def mount(self, source, target, fs_type, options):
        """Mount source on target, 'bind' in options makes a bind mount."""

    @abc.abstractmethod
    def unmount(self, target):
        """Unmount target and remove the directory.

        If target does not exist, nothing is done. If target is not a
        mount point, the directory is removed. If target is a mount point,
        it is unmounted and the directory is removed.
        """


class SafeMounter(Mounter):
    """Mounter running the util-linux tools."""

    def __init__(self, root_helper=None):
        self.root_helper = root_helper

    def _execute(self, *cmd, **kwargs):
        if self.root_helper:
            kwargs.setdefault('run_as_root', True)
            kwargs.setdefault('root_helper', self.root_helper)
        return processutils.execute(*cmd, **kwargs)

    def _list_mounts(self):
        try:
            return list_mounts()
        except (IOError, OSError) as ex:
            raise exception.MountError(
                reason=_('Unable to read the mount table: {}').format(ex))

    def is_mount_point(self, target):
        path = os.path.realpath(target)
        return any(m.path == path for m in self._list_mounts())

    def get_device_name_from_mount(self, mount_path):
        path = os.path.realpath(mount_path)
        mounts = self._list_mounts()

        device = ''
        for mount in mounts:
            if mount.path == path:
                device = mount.device
                break
        if not device:
            return '', 0

        ref_count = len([m for m in mounts if m.device == device])
        return device, ref_count

    def _get_disk_format(self, device):
        """Return the filesystem on device, '' when it is unformatted."""
        try:
            out, _err = self._execute(
                'blkid', '-p', '-s', 'TYPE', '-s', 'PTTYPE', '-o', 'export',
                device)
        except processutils.ProcessExecutionError as ex:
            if ex.exit_code == BLKID_NOT_FOUND:
                return ''
            raise exception.MountError(
                reason=_('Failed to probe {device}: {ex}').format(
                    device=device, ex=ex))

        fs_type = ''
        for line in out.splitlines():
            key, sep, value = line.strip().partition('=')
            if not sep:
                continue
            if key == 'TYPE':
                fs_type = value
            elif key == 'PTTYPE':
                raise exception.MountError(
                    reason=_('{device} has a {pttype} partition table, '
                             'refusing to use it').format(
                        device=device, pttype=value))
        return fs_type

    def format_and_mount(self, source, target, fs_type, options):
        existing = self._get_disk_format(source)
        if not existing:
            args = ['mkfs', '-t', fs_type]
            if fs_type.startswith('ext'):
                args.extend(['-F', '-m0'])
            args.append(source)
            LOG.info('Formatting %(source)s as %(fs_type)s',
                     {'source': source, 'fs_type': fs_type})
            try:
                self._execute(*args)
            except processutils.ProcessExecutionError as ex:
                raise exception.MountError(
                    reason=_('Failed to format {source}: {ex}').format(
                        source=source, ex=ex))
        elif existing != fs_type:
            raise exception.MountError(
                reason=_('{source} already contains a {existing} '
                         'filesystem, refusing to mount it as '
                         '{fs_type}').format(source=source,
                                             existing=existing,
                                             fs_type=fs_type))

        created = not os.path.isdir(target)
        fileutils.ensure_tree(target)
        try:
            self.mount(source, target, fs_type, options or ['defaults'])
        except exception.MountError:
            with excutils.save_and_reraise_exception():
                if created:
                    self._remove_target(target)

    def _remove_target(self, target):
        try:
            os.rmdir(target)
        except OSError as ex:
            LOG.warning('Failed to remove %(target)s: %(ex)s',
                        {'target': target, 'ex': ex})

    def _mount(self, source, target, fs_type, options):
        args = ['mount']
        if fs_type:
            args.extend(['-t', fs_type])
        if options:
            args.extend(['-o', ','.join(options)])
        args.extend([source, target])
        try:
            self._execute(*args)
        except processutils.ProcessExecutionError as ex:
            raise exception.MountError(
                reason=_('Failed to mount {source} at {target}: '
                         '{ex}').format(source=source, target=target, ex=ex))

    def mount(self, source, target, fs_type, options):
        LOG.info('Mounting %(source)s at %(target)s with %(options)s',
                 {'source': source, 'target': target, 'options': options})
        if 'bind' not in options:
            self._mount(source, target, fs_type, options)
            return

        # Options other than bind only apply on a remount of the bind.
        remount_options = [o for o in options if o != 'bind']
        self._mount(source, target, fs_type, ['bind'])
        if remount_options:
            self._mount(source, target, fs_type,
                        ['bind', 'remount'] + remount_options)

    def unmount(self, target):
        if not os.path.exists(target):
            LOG.debug('%s does not exist, nothing to unmount', target)
            return

        if self.is_mount_point(target):
            LOG.info('Unmounting %s', target)
            try:
                self._execute('umount', target)
            except processutils.ProcessExecutionError as ex:
                raise exception.MountError(
                    reason=_('Failed to unmount {target}: {ex}').format(
                        target=target, ex=ex))
            if self.is_mount_point(target):
                raise exception.MountError(
                    reason=_('{target} is still mounted after '
                             'unmount').format(target=target))

        try:
            os.rmdir(target)
        except OSError as ex:
            if ex.errno == errno.ENOENT:
                return
            raise exception.MountError(
                reason=_('Failed to remove {target}: {ex}').format(
                    target=target, ex=ex))
