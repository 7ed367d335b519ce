import asyncio
from enum import Enum

from pyiecmaster.protocols import BaseSession, TransportKind
from pyiecmaster.protocols.asdu import DEFAULT_PARAMS
import pyiecmaster.utils.logger as my_logger
from .frame import *

logger = my_logger.get_logger('CS104Connection')


class ConnectionEvent(Enum):
    OPENED = 0
    CLOSED = 1
    STARTDT_CON_RECEIVED = 2
    STOPDT_CON_RECEIVED = 3


class CS104Connection(BaseSession):
    kind = TransportKind.NETWORKED

    def __init__(self, host: str = 'localhost', port: int = IEC_60870_5_104_DEFAULT_PORT, params=DEFAULT_PARAMS,
                 io_loop: asyncio.AbstractEventLoop = None):
        super(CS104Connection, self).__init__('{}:{}'.format(host, port), params, io_loop)
        self.host = host
        self.port = port
        self.ssn = 0
        self.rsn = 0
        self.k = 0
        self.w = 0
        self.connected = False
        self.reader = None
        self.writer = None
        self.receive_handler = None
        self.connection_handler = None
        self.timers = dict()
        self.pending = set()
        self.closing = list()

    def set_connection_handler(self, handler):
        """:param handler: callable(connection, event: ConnectionEvent)"""
        self.connection_handler = handler

    def notify(self, event):
        if self.connection_handler:
            self.connection_handler(self, event)

    async def connect(self):
        try:
            self.reader, self.writer = await asyncio.wait_for(
                    asyncio.open_connection(self.host, self.port), timeout=IECParam.T0)
        except asyncio.TimeoutError:
            logger.info('connection[%s] connect timeout', self.name)
            return False
        except OSError as e:
            logger.info('connection[%s] connect failed: %s', self.name, repr(e))
            return False
        self.connected = True
        self.receive_handler = self.io_loop.create_task(self.receive())
        self.start_timer('t3', IECParam.T3, self.on_timer3)
        self.notify(ConnectionEvent.OPENED)
        return True

    def close(self):
        for name in list(self.timers):
            self.stop_timer(name)
        if self.receive_handler and self.receive_handler is not asyncio.current_task(self.io_loop):
            self.receive_handler.cancel()
            self.closing.append(self.receive_handler)
        self.receive_handler = None
        if self.writer:
            self.writer.close()
            self.closing.append(self.writer)
            self.writer = None
        self.ssn = 0
        self.rsn = 0
        self.k = 0
        self.w = 0
        if self.connected:
            self.connected = False
            self.notify(ConnectionEvent.CLOSED)

    def destroy(self):
        self.close()
        self.asdu_handler = None
        self.connection_handler = None
        self.raw_message_handler = None
        logger.debug('connection[%s] destroyed', self.name)

    async def wait_closed(self):
        closing, self.closing = self.closing, list()
        waits = [item.wait_closed() if isinstance(item, asyncio.StreamWriter) else item for item in closing]
        # cancelled tasks and reset sockets end with an exception here
        await asyncio.gather(*waits, *self.pending, return_exceptions=True)

    def spawn(self, coro):
        task = self.io_loop.create_task(coro)
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)
        return task

    def inc_ssn(self):
        self.ssn = self.ssn + 1 if self.ssn < 32767 else 0
        return self.ssn

    def inc_rsn(self):
        self.rsn = self.rsn + 1 if self.rsn < 32767 else 0
        return self.rsn

    def start_timer(self, name, timeout, callback):
        self.stop_timer(name)
        self.timers[name] = self.io_loop.call_later(timeout, callback)

    def stop_timer(self, name):
        timeout_handler = self.timers.pop(name, None)
        if timeout_handler:
            timeout_handler.cancel()

    def on_timer1(self):
        logger.error('connection[%s] T1 timeout, k=%s, close connection', self.name, self.k)
        self.timers.pop('t1', None)
        self.close()

    def on_timer2(self):
        logger.debug('connection[%s] T2 timeout, send S_frame(rsn=%s)', self.name, self.rsn)
        self.timers.pop('t2', None)
        self.spawn(self.send_s())

    def on_timer3(self):
        logger.debug('connection[%s] T3 timeout, send heartbeat', self.name)
        self.timers.pop('t3', None)
        self.spawn(self.send_u(UFrame.TESTFR_ACT))

    async def receive(self):
        try:
            while True:
                data = await self.reader.readexactly(2)
                head = iec_head.parse(data)
                data += await self.reader.readexactly(head.length)
                self.start_timer('t3', IECParam.T3, self.on_timer3)
                self.on_raw_message(data, False)
                logger.debug("connection[%s] recv: %s", self.name, data.hex())
                frame = iec_104.parse(data)
                kind = frame_kind(frame)
                if kind == 'U':
                    await self.handle_u(frame)
                elif kind == 'S':
                    self.handle_ack(frame.APCI2)
                else:
                    await self.handle_i(frame)
                if not self.connected:
                    return
        except asyncio.IncompleteReadError:
            logger.info("connection[%s] closed by remote side", self.name)
        except ConnectionResetError:
            logger.warning("connection[%s] reset by remote side", self.name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("connection[%s] receive failed: %s", self.name, repr(e), exc_info=True)
        self.close()

    def handle_ack(self, rsn):
        # peer acknowledged frames we never sent
        if self.ssn < rsn and rsn - self.ssn < 20000:
            logger.error("connection[%s] ack mismatch! self.ssn=%s, frame.rsn=%s", self.name, self.ssn, rsn)
            self.close()
            return False
        self.k = self.ssn - rsn if self.ssn >= rsn else 32768 + self.ssn - rsn
        if self.k == 0:
            self.stop_timer('t1')
        return True

    async def handle_u(self, frame):
        logger.debug("connection[%s] got U_FRAME: %s", self.name, frame.APCI1.name)
        if frame.APCI1 == UFrame.STARTDT_CON:
            self.stop_timer('t1')
            self.notify(ConnectionEvent.STARTDT_CON_RECEIVED)
        elif frame.APCI1 == UFrame.STOPDT_CON:
            self.stop_timer('t1')
            self.notify(ConnectionEvent.STOPDT_CON_RECEIVED)
        elif frame.APCI1 == UFrame.TESTFR_ACT:
            await self.send_u(UFrame.TESTFR_CON)
        elif frame.APCI1 == UFrame.TESTFR_CON:
            self.stop_timer('t1')
        else:
            logger.warning("connection[%s] unexpected U_FRAME %s ignored", self.name, frame.APCI1.name)

    async def handle_i(self, frame):
        if frame.APCI1 != self.rsn:
            logger.error("connection[%s] I_frame mismatch! self.rsn=%s, frame.ssn=%s", self.name, self.rsn,
                         frame.APCI1)
            self.close()
            return
        if not self.handle_ack(frame.APCI2):
            return
        self.inc_rsn()
        self.w += 1
        if self.w >= IECParam.W:
            await self.send_s()
        elif 't2' not in self.timers:
            self.start_timer('t2', IECParam.T2, self.on_timer2)
        self.deliver_asdu(None, frame.ASDU)

    async def send_frame(self, frame):
        data = iec_104.build(frame)
        self.writer.write(data)
        await self.writer.drain()
        self.on_raw_message(data, True)
        logger.debug("connection[%s] send_frame(%s): %s", self.name, frame_kind(frame), data.hex())

    async def send_s(self):
        if not self.connected:
            return
        try:
            self.stop_timer('t2')
            await self.send_frame(init_frame("S", self.rsn))
            self.w = 0
        except Exception as e:
            logger.error("connection[%s] send S_frame failed: %s", self.name, repr(e), exc_info=True)
            self.close()

    async def send_u(self, function):
        if not self.connected:
            logger.error("connection[%s] send %s failed: not connected", self.name, function.name)
            return False
        try:
            await self.send_frame(init_frame(function))
        except Exception as e:
            logger.error("connection[%s] send %s failed: %s", self.name, function.name, repr(e), exc_info=True)
            self.close()
            return False
        if function in (UFrame.STARTDT_ACT, UFrame.STOPDT_ACT, UFrame.TESTFR_ACT):
            self.start_timer('t1', IECParam.T1, self.on_timer1)
        return True

    async def send_start_dt(self):
        return await self.send_u(UFrame.STARTDT_ACT)

    async def send_stop_dt(self):
        return await self.send_u(UFrame.STOPDT_ACT)

    async def send_asdu(self, data):
        if not self.connected:
            logger.error("connection[%s] send ASDU failed: not connected", self.name)
            return False
        if self.k >= IECParam.K:
            logger.error("connection[%s] send ASDU failed: %s frames unacknowledged", self.name, self.k)
            return False
        try:
            self.stop_timer('t2')
            await self.send_frame(init_frame(self.ssn, self.rsn, data))
        except Exception as e:
            logger.error("connection[%s] send ASDU failed: %s", self.name, repr(e), exc_info=True)
            self.close()
            return False
        self.inc_ssn()
        self.k += 1
        self.w = 0
        if 't1' not in self.timers:
            self.start_timer('t1', IECParam.T1, self.on_timer1)
        return True

    async def run(self):
        # frames are handled by the receive task, give it a turn
        await asyncio.sleep(0)
