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

import argparse
import asyncio
import signal
import sys

from pyiecmaster.master import AsduDispatcher, CommandSequencer, EventMonitor, OneShotDriver, PollingDriver, \
    RawMessageLogger
from pyiecmaster.protocols.iec101 import DEFAULT_SERIAL_DEVICE, CS101Master, LinkLayerMode, LinkLayerParameters, \
    SerialPort
from pyiecmaster.protocols.iec104 import IEC_60870_5_104_DEFAULT_PORT, CS104Connection
from pyiecmaster.utils.read_config import app_dir, config, config_file
import pyiecmaster.utils.logger as my_logger

logger = my_logger.get_logger('MasterCLI')

BALANCED_OWN_ADDRESS = 3
BALANCED_SLAVE_ADDRESS = 3
UNBALANCED_SLAVES = (1, 2)


def install_handlers(session, io_loop):
    monitor = EventMonitor()
    session.set_asdu_received_handler(AsduDispatcher())
    if hasattr(session, 'set_connection_handler'):
        session.set_connection_handler(monitor.on_connection_event)
    if hasattr(session, 'set_link_layer_state_changed'):
        session.set_link_layer_state_changed(monitor.on_link_layer_state)
    raw_logger = None
    if config.getboolean('MASTER', 'log_frame', fallback=False) or \
            config.getboolean('MASTER', 'record_frame', fallback=False):
        raw_logger = RawMessageLogger(session.name, io_loop=io_loop)
        session.set_raw_message_handler(raw_logger)
    return raw_logger


def run_driver(io_loop, driver, raw_logger, on_interrupt=None):
    """SIGINT calls on_interrupt, or cancels the driver task when none is given."""
    print('used config file:', config_file)
    print('log stored in:', app_dir.user_log_dir)
    task = io_loop.create_task(driver.run())
    io_loop.add_signal_handler(signal.SIGINT, on_interrupt or task.cancel)
    try:
        io_loop.run_until_complete(task)
    except asyncio.CancelledError:
        logger.info('interrupted')
    except Exception as ee:
        logger.info('got error: %s', repr(ee), exc_info=True)
    finally:
        if raw_logger:
            io_loop.run_until_complete(raw_logger.close())
        io_loop.close()


def client104_main(argv=None):
    parser = argparse.ArgumentParser(description='IEC 60870-5-104 client')
    parser.add_argument('host', nargs='?', default='localhost', help='server address, default: localhost')
    parser.add_argument('port', nargs='?', type=int, default=IEC_60870_5_104_DEFAULT_PORT,
                        help='server port, default: {}'.format(IEC_60870_5_104_DEFAULT_PORT))
    args = parser.parse_args(argv)
    io_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(io_loop)
    connection = CS104Connection(args.host, args.port, io_loop=io_loop)
    raw_logger = install_handlers(connection, io_loop)
    run_driver(io_loop, OneShotDriver(connection, CommandSequencer(connection)), raw_logger)


def run_serial_master(argv, mode, description):
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument('device', nargs='?', default=DEFAULT_SERIAL_DEVICE,
                        help='serial device, default: {}'.format(DEFAULT_SERIAL_DEVICE))
    args = parser.parse_args(argv)
    link_params = LinkLayerParameters(use_single_char_ack=mode != LinkLayerMode.BALANCED)
    port = SerialPort(args.device, timeout=link_params.timeout_for_ack)
    if not port.open():
        print('failed to open serial port', args.device)
        sys.exit(1)
    io_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(io_loop)
    master = CS101Master(port, mode, link_params, io_loop=io_loop)
    if mode == LinkLayerMode.BALANCED:
        master.set_own_address(BALANCED_OWN_ADDRESS)
        master.use_slave_address(BALANCED_SLAVE_ADDRESS)
        slaves = ()
    else:
        for address in UNBALANCED_SLAVES:
            master.add_slave(address)
        slaves = UNBALANCED_SLAVES
    raw_logger = install_handlers(master, io_loop)
    stop_event = asyncio.Event()
    driver = PollingDriver(master, port, CommandSequencer(master), stop_event, slaves=slaves)
    run_driver(io_loop, driver, raw_logger, on_interrupt=stop_event.set)


def balanced_main(argv=None):
    run_serial_master(argv, LinkLayerMode.BALANCED, 'IEC 60870-5-101 balanced master')


def unbalanced_main(argv=None):
    run_serial_master(argv, LinkLayerMode.UNBALANCED, 'IEC 60870-5-101 unbalanced master')


if __name__ == '__main__':
    client104_main()
