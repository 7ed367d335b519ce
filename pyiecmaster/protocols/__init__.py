import asyncio
from abc import ABCMeta, abstractmethod
from enum import Enum

from construct import ConstructError

from pyiecmaster.protocols.asdu import (ASDU, DEFAULT_PARAMS, TYP, Cause, ClockSynchronizationCommand,
                                        InterrogationCommand, ReadCommand)
from pyiecmaster.utils import logger as my_logger

logger = my_logger.get_logger('BaseSession')


class TransportKind(Enum):
    NETWORKED = 'networked'
    SERIAL_BALANCED = 'serial-balanced'
    SERIAL_UNBALANCED = 'serial-unbalanced'


class BaseSession(object, metaclass=ABCMeta):
    """
    Master side of one IEC 60870-5 session.

    Subclasses move bytes; this class owns handler registration and turns the
    supervisory requests into ASDUs handed to :meth:`send_asdu`. Handlers are
    invoked on the event loop thread and must return promptly.
    """
    kind = None

    def __init__(self, name: str, params=DEFAULT_PARAMS, io_loop: asyncio.AbstractEventLoop = None):
        self.name = name
        self.params = params
        self.io_loop = io_loop or asyncio.get_event_loop()
        self.asdu_handler = None
        self.raw_message_handler = None

    def set_asdu_received_handler(self, handler):
        """:param handler: callable(address, asdu) -> bool"""
        self.asdu_handler = handler

    def set_raw_message_handler(self, handler):
        """:param handler: callable(data: bytes, sent: bool)"""
        self.raw_message_handler = handler

    def on_raw_message(self, data, sent):
        if self.raw_message_handler:
            self.raw_message_handler(data, sent)

    def deliver_asdu(self, address, data):
        """Parse ``data`` and hand it to the ASDU handler, dropping malformed envelopes."""
        try:
            asdu = ASDU.parse(data, self.params)
        except ConstructError as e:
            logger.error('session[%s] bad ASDU from %s: %s, data=%s', self.name, address, repr(e), data.hex())
            return False
        if self.asdu_handler is None:
            logger.debug('session[%s] no ASDU handler, dropped %s', self.name, asdu)
            return True
        return self.asdu_handler(address, asdu)

    def build_asdu(self, type_id, cause, common_address, io):
        asdu = ASDU(type_id, cause, common_address, params=self.params)
        asdu.add_element(io)
        return asdu.build()

    async def send_interrogation_command(self, cause, common_address, qoi):
        return await self.send_asdu(self.build_asdu(
                TYP.C_IC_NA_1, cause, common_address, InterrogationCommand(0, qoi)))

    async def send_process_command(self, cause, common_address, io):
        return await self.send_asdu(self.build_asdu(io.TYPE_ID, cause, common_address, io))

    async def send_clock_sync_command(self, common_address, timestamp):
        return await self.send_asdu(self.build_asdu(
                TYP.C_CS_NA_1, Cause.act, common_address, ClockSynchronizationCommand(0, timestamp)))

    async def send_read_command(self, common_address, ioa):
        return await self.send_asdu(self.build_asdu(TYP.C_RD_NA_1, Cause.req, common_address, ReadCommand(ioa)))

    @abstractmethod
    async def send_asdu(self, data: bytes) -> bool:
        """
        :param data: encoded ASDU
        :return: True when the ASDU was handed to the link
        """
        pass

    @abstractmethod
    async def run(self):
        """Do the pending protocol work once; returns within a bounded time."""
        pass

    @abstractmethod
    def destroy(self):
        pass

    async def wait_closed(self):
        """Wait until the resources released by destroy() are gone."""
        pass
