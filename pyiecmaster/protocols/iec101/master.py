import asyncio
from collections import deque
from enum import Enum

from construct import ConstructError

from pyiecmaster.protocols import BaseSession, TransportKind
from pyiecmaster.protocols.asdu import DEFAULT_PARAMS
from pyiecmaster.utils.read_config import config
import pyiecmaster.utils.logger as my_logger
from .frame import *

logger = my_logger.get_logger('CS101Master')


class LinkLayerMode(Enum):
    BALANCED = 0
    UNBALANCED = 1


class LinkLayerState(Enum):
    IDLE = 0
    ERROR = 1
    BUSY = 2
    AVAILABLE = 3


class LinkLayerParameters(object):
    def __init__(self, address_size: int = None, timeout_for_ack: float = None, use_single_char_ack: bool = True):
        self.address_size = address_size or config.getint('IEC101', 'link_address_size', fallback=1)
        self.timeout_for_ack = timeout_for_ack or config.getfloat('IEC101', 'response_timeout', fallback=0.5)
        self.use_single_char_ack = use_single_char_ack


class LinkStation(object):
    """Link layer state of the station at the other end: a polled slave, or the balanced peer."""

    def __init__(self, address):
        self.address = address
        self.state = LinkLayerState.IDLE
        self.link_reset = False
        self.fcb = False
        self.request_class_1 = False
        self.poll_requested = False
        self.user_data = deque()


class CS101Master(BaseSession):
    """
    Primary station of a 101 serial link.

    Unbalanced: every registered slave is driven by its own link state; an
    exchange only happens for slaves with a pending poll or queued user data.
    Balanced: one peer, selected with :meth:`use_slave_address`; frames the
    peer sends on its own are answered and dispatched during :meth:`run`.

    Serial reads run in the default executor, bounded by the response
    timeout; ASDUs are delivered back on the event loop thread.
    """

    def __init__(self, port, mode: LinkLayerMode = LinkLayerMode.UNBALANCED, link_params: LinkLayerParameters = None,
                 params=DEFAULT_PARAMS, io_loop: asyncio.AbstractEventLoop = None):
        super(CS101Master, self).__init__(port.device, params, io_loop)
        self.port = port
        self.mode = mode
        self.kind = TransportKind.SERIAL_BALANCED if mode == LinkLayerMode.BALANCED \
            else TransportKind.SERIAL_UNBALANCED
        self.link_params = link_params or LinkLayerParameters()
        self.own_address = 0
        self.slave_address = None
        self.slaves = dict()
        self.link_state_handler = None

    def set_own_address(self, address):
        self.own_address = address

    def set_link_layer_state_changed(self, handler):
        """:param handler: callable(address, state: LinkLayerState)"""
        self.link_state_handler = handler

    def add_slave(self, address):
        if self.mode == LinkLayerMode.BALANCED:
            raise ValueError('slaves can only be added to an unbalanced master')
        if address not in self.slaves:
            self.slaves[address] = LinkStation(address)

    def use_slave_address(self, address):
        self.slave_address = address
        if self.mode == LinkLayerMode.BALANCED and address not in self.slaves:
            self.slaves = {address: LinkStation(address)}

    def poll_single_slave(self, address):
        slave = self.slaves.get(address)
        if slave is None:
            logger.error('master[%s] poll unknown slave %s', self.name, address)
            return
        slave.poll_requested = True

    def get_link_layer_state(self, address):
        station = self.slaves.get(address)
        return station.state if station else None

    async def send_asdu(self, data):
        station = self.slaves.get(self.slave_address)
        if station is None:
            logger.error('master[%s] send ASDU failed: slave %s not registered', self.name, self.slave_address)
            return False
        station.user_data.append(data)
        return True

    async def run(self):
        try:
            if self.mode == LinkLayerMode.UNBALANCED:
                for slave in list(self.slaves.values()):
                    if slave.poll_requested or slave.user_data:
                        await self.service_slave(slave)
            else:
                await self.run_balanced()
        except Exception as e:
            logger.error('master[%s] run failed: %s', self.name, repr(e), exc_info=True)

    def destroy(self):
        self.slaves.clear()
        self.asdu_handler = None
        self.link_state_handler = None
        self.raw_message_handler = None
        logger.debug('master[%s] destroyed', self.name)

    def set_state(self, station, state):
        if station.state == state:
            return
        station.state = state
        if self.link_state_handler:
            self.link_state_handler(station.address, state)

    def fail(self, station):
        station.link_reset = False
        self.set_state(station, LinkLayerState.ERROR)

    def acknowledge(self, station, response):
        # DFC set: secondary can't take more user data for now
        if response.kind != 'single' and response.control.FCV:
            self.set_state(station, LinkLayerState.BUSY)
        else:
            self.set_state(station, LinkLayerState.AVAILABLE)

    @staticmethod
    def function_of(response):
        if response.kind == 'single':
            return SecondaryFunction.ACK
        return response.control.function

    def read_frame(self):
        start = self.port.read(1)
        if not start:
            return b''
        if start[0] == START_FIXED:
            return start + self.port.read(3 + self.link_params.address_size)
        if start[0] == START_VARIABLE:
            head = self.port.read(3)
            if len(head) < 3:
                return start + head
            return start + head + self.port.read(head[0] + 2)
        return start

    async def transmit(self, data):
        self.on_raw_message(data, True)
        logger.debug('master[%s] send: %s', self.name, data.hex())
        await self.io_loop.run_in_executor(None, self.port.write, data)

    async def receive(self):
        data = await self.io_loop.run_in_executor(None, self.read_frame)
        if not data:
            return None
        self.on_raw_message(data, False)
        logger.debug('master[%s] recv: %s', self.name, data.hex())
        try:
            return parse_frame(data, self.link_params.address_size)
        except ConstructError as e:
            logger.warning('master[%s] bad frame %s: %s', self.name, data.hex(), repr(e))
            self.port.discard_input()
            return None

    async def send_request(self, station, function, asdu=None):
        """
        Send one primary frame to ``station`` and wait for its response.

        :return: parsed response, None on timeout or protocol violation (station moves to ERROR)
        """
        fcv = function in FCV_FUNCTIONS
        if fcv:
            station.fcb = not station.fcb
        control = control_field(function, prm=True, fcb=station.fcb if fcv else False, fcv=fcv,
                                direction=self.mode == LinkLayerMode.BALANCED)
        size = self.link_params.address_size
        if asdu is None:
            frame = build_fixed(control, station.address, size)
        else:
            frame = build_variable(control, station.address, asdu, size)
        await self.transmit(frame)
        # a balanced peer may send its own requests before answering ours
        for _ in range(3):
            response = await self.receive()
            if response is None:
                logger.warning('master[%s] no valid response from %s to %s', self.name, station.address,
                               PrimaryFunction(function).name)
                break
            if response.kind != 'single' and response.control.PRM:
                if self.mode == LinkLayerMode.BALANCED:
                    await self.handle_primary(response)
                    continue
                logger.warning('master[%s] primary frame from slave %s', self.name, response.address)
                break
            if response.kind != 'single' and response.address != station.address:
                logger.warning('master[%s] response from %s while waiting for %s', self.name, response.address,
                               station.address)
                break
            if response.kind != 'single':
                station.request_class_1 = response.control.FCB
            return response
        self.fail(station)
        return None

    async def reset_link(self, station):
        response = await self.send_request(station, PrimaryFunction.REQUEST_LINK_STATUS)
        if response is None:
            return False
        if self.function_of(response) != SecondaryFunction.STATUS_OF_LINK_OR_ACCESS_DEMAND:
            logger.warning('master[%s] unexpected response %s to link status request', self.name,
                           self.function_of(response))
            self.fail(station)
            return False
        response = await self.send_request(station, PrimaryFunction.RESET_REMOTE_LINK)
        if response is None:
            return False
        if self.function_of(response) != SecondaryFunction.ACK:
            logger.warning('master[%s] link reset of %s refused', self.name, station.address)
            self.fail(station)
            return False
        station.link_reset = True
        station.fcb = False
        self.acknowledge(station, response)
        return True

    async def send_user_data(self, station):
        response = await self.send_request(station, PrimaryFunction.USER_DATA_CONFIRMED, station.user_data[0])
        if response is None:
            return False
        function = self.function_of(response)
        if function == SecondaryFunction.ACK:
            station.user_data.popleft()
            self.acknowledge(station, response)
            return True
        if function == SecondaryFunction.NACK:
            logger.warning('master[%s] %s not ready, user data kept', self.name, station.address)
            self.set_state(station, LinkLayerState.BUSY)
            return False
        self.fail(station)
        return False

    async def service_slave(self, slave):
        if slave.state == LinkLayerState.ERROR:
            self.set_state(slave, LinkLayerState.IDLE)
        if not slave.link_reset and not await self.reset_link(slave):
            return
        if slave.user_data and not await self.send_user_data(slave) and not slave.link_reset:
            return
        if not slave.poll_requested:
            return
        slave.poll_requested = False
        function = PrimaryFunction.REQUEST_USER_DATA_CLASS_1 if slave.request_class_1 \
            else PrimaryFunction.REQUEST_USER_DATA_CLASS_2
        response = await self.send_request(slave, function)
        if response is None:
            return
        if response.kind == 'variable' and response.control.function == SecondaryFunction.RESP_USER_DATA:
            self.acknowledge(slave, response)
            self.deliver_asdu(slave.address, response.asdu)
        elif response.kind == 'single' or response.control.function == SecondaryFunction.RESP_NACK_NO_DATA:
            self.acknowledge(slave, response)
        else:
            logger.warning('master[%s] unexpected response %s to class request', self.name,
                           response.control.function)
            self.fail(slave)

    async def run_balanced(self):
        peer = self.slaves.get(self.slave_address)
        if peer is not None:
            if peer.state == LinkLayerState.ERROR:
                self.set_state(peer, LinkLayerState.IDLE)
            if not peer.link_reset:
                await self.reset_link(peer)
            elif peer.user_data:
                await self.send_user_data(peer)
        while self.port.bytes_waiting():
            frame = await self.receive()
            if frame is None:
                break
            if frame.kind != 'single' and frame.control.PRM:
                await self.handle_primary(frame)
            else:
                logger.debug('master[%s] unsolicited secondary frame dropped', self.name)

    async def send_secondary(self, function):
        control = control_field(function, prm=False, direction=True)
        await self.transmit(build_fixed(control, self.own_address, self.link_params.address_size))

    async def send_ack(self):
        if self.link_params.use_single_char_ack:
            await self.transmit(bytes([SINGLE_CHAR_ACK]))
        else:
            await self.send_secondary(SecondaryFunction.ACK)

    async def handle_primary(self, frame):
        """Answer a request the balanced peer sent as primary station."""
        function = frame.control.function
        if function in (PrimaryFunction.RESET_REMOTE_LINK, PrimaryFunction.TEST_FUNCTION_FOR_LINK):
            await self.send_ack()
        elif function == PrimaryFunction.REQUEST_LINK_STATUS:
            await self.send_secondary(SecondaryFunction.STATUS_OF_LINK_OR_ACCESS_DEMAND)
        elif function in (PrimaryFunction.USER_DATA_CONFIRMED, PrimaryFunction.USER_DATA_NO_REPLY):
            if function == PrimaryFunction.USER_DATA_CONFIRMED:
                await self.send_ack()
            if frame.asdu:
                self.deliver_asdu(self.slave_address, frame.asdu)
        else:
            logger.warning('master[%s] function %s from peer not implemented', self.name, function)
            await self.send_secondary(SecondaryFunction.LINK_SERVICE_NOT_IMPLEMENTED)
