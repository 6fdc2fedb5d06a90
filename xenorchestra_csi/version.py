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

# Overridden at build time.
driver_version = '0.1.0'
git_commit = 'none'
build_date = 'unknown'


def version_string():
    return driver_version


def version_info_string():
    return 'Version: {}, GitCommit: {}, BuildDate: {}'.format(
        driver_version, git_commit, build_date)
