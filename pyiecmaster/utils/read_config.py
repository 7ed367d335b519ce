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

from appdirs import AppDirs
import os
import configparser
from pyiecmaster import version as app_ver

config_example = """# PyIECMaster configuration file
[MASTER]
# log every sent/received frame as hex
log_frame = False
# append every sent/received frame to redis list LST:FRAME:<session>
record_frame = False

[IEC104]
# protocol parameters, don't modify it unless you know what it means
# connect timeout in seconds
T0 = 30
# wait for ack of a sent I frame / U frame
T1 = 15
# ack received I frames after T2 seconds at the latest
T2 = 10
# send TESTFR_ACT after T3 seconds of silence
T3 = 20
# max unacknowledged sent I frames
K = 12
# ack after receiving W I frames
W = 8

[IEC101]
# seconds to wait for a secondary station response
response_timeout = 0.5
# link address field size in bytes (1 or 2)
link_address_size = 1

[REDIS]
host = 127.0.0.1
port = 6379
db = 1

[LOG]
level = INFO
format = %(asctime)s %(name)s [%(levelname)s] %(message)s
"""

app_dir = AppDirs('PyIECMaster', False, version=app_ver)
config_file = os.path.join(app_dir.user_config_dir, 'config.ini')
if not os.path.exists(config_file):
    if not os.path.exists(app_dir.user_config_dir):
        os.makedirs(app_dir.user_config_dir)
    with open(config_file, 'wt') as f:
        f.write(config_example)
    print('create config file:', config_file)

config = configparser.ConfigParser(interpolation=None)
config.read(config_file)
