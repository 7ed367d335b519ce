#!/usr/bin/env python
#
# Copyright 2016 timercrack
#
# Licensed under the Apache License, Version 2.0 (the "License"); you may
# not use this file except in compliance with the License. You may obtain
# a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
# WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
# License for the specific language governing permissions and limitations
# under the License.

from setuptools import setup, find_packages
import sys
from pyiecmaster import version
if sys.version_info < (3, 8):
    print("PyIECMaster needs python version >= 3.8, please upgrade!")
    sys.exit(1)

kwargs = {}

with open('README.rst') as f:
    kwargs['long_description'] = f.read()

kwargs['version'] = version

with open('requirements.txt') as f:
    kwargs['install_requires'] = f.read().splitlines()

setup(
    name="PyIECMaster",
    packages=find_packages(exclude=['test', 'test.*']),
    entry_points={
        'console_scripts': [
            'iec104-client = pyiecmaster.master_cli:client104_main',
            'iec101-master-balanced = pyiecmaster.master_cli:balanced_main',
            'iec101-master-unbalanced = pyiecmaster.master_cli:unbalanced_main',
        ],
    },
    extras_require={
        'test': ['pytest'],
    },
    python_requires='>=3.8',
    keywords="IEC60870 IEC104 IEC101 SCADA master",
    author="timercrack",
    author_email="timercrack@gmail.com",
    license="http://www.apache.org/licenses/LICENSE-2.0",
    description="PyIECMaster is a set of IEC 60870-5-101/104 master programs.",
    classifiers=[
        'Environment :: Console',
        'Intended Audience :: Information Technology',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Natural Language :: English',
        'Operating System :: POSIX',
        'Operating System :: MacOS',
        'Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator',
    ],
    **kwargs
)
