import asyncio
from enum import Enum

from pyiecmaster.protocols import TransportKind
import pyiecmaster.utils.logger as my_logger

logger = my_logger.get_logger('SessionDriver')

COMMAND_IOA = 5000
READ_IOA = 102

# (cycle, sequencer method, arguments)
UNBALANCED_SCHEDULE = (
    (10, 'interrogate', dict(slave=1)),
    (30, 'read', dict(ioa=READ_IOA, slave=1)),
    (50, 'direct_operate', dict(ioa=COMMAND_IOA, state=True, slave=1)),
    (80, 'clock_sync', dict(slave=1)),
)
BALANCED_SCHEDULE = (
    (10, 'interrogate', dict()),
    (50, 'direct_operate', dict(ioa=COMMAND_IOA, state=True)),
    (80, 'clock_sync', dict()),
)
UNBALANCED_PAUSE = 0.1
BALANCED_PAUSE = 0.001


class Phase(Enum):
    CONNECTING = 0
    STARTED = 1
    INTERROGATING = 2
    COMMANDING = 3
    SYNCHRONIZING = 4
    CLOSING = 5


class OneShotDriver(object):
    """Runs the 104 client script once: connect, start, interrogate, command, synchronize, close."""

    def __init__(self, connection, sequencer, start_delay=5, interrogation_delay=5, sync_delay=1, close_delay=1):
        self.connection = connection
        self.sequencer = sequencer
        self.start_delay = start_delay
        self.interrogation_delay = interrogation_delay
        self.sync_delay = sync_delay
        self.close_delay = close_delay
        self.phase = None

    def enter(self, phase):
        logger.debug('%s -> %s', self.phase.name if self.phase else None, phase.name)
        self.phase = phase

    async def script(self):
        self.enter(Phase.STARTED)
        await self.sequencer.start_data_transfer()
        await asyncio.sleep(self.start_delay)
        self.enter(Phase.INTERROGATING)
        await self.sequencer.interrogate()
        await asyncio.sleep(self.interrogation_delay)
        self.enter(Phase.COMMANDING)
        await self.sequencer.direct_operate(COMMAND_IOA, True)
        self.enter(Phase.SYNCHRONIZING)
        await self.sequencer.clock_sync()
        await asyncio.sleep(self.sync_delay)

    async def run(self):
        try:
            self.enter(Phase.CONNECTING)
            if await self.connection.connect():
                await self.script()
            else:
                logger.error('Connect failed!')
            await asyncio.sleep(self.close_delay)
        except Exception as e:
            logger.error('run %s failed: %s', self.phase.name, repr(e), exc_info=True)
        finally:
            self.enter(Phase.CLOSING)
            self.connection.destroy()
            await self.connection.wait_closed()
            logger.info('exit')


class PollingDriver(object):
    """
    Cycle loop of the 101 masters, runs until ``stop_event`` is set.

    Each cycle polls the slaves in the given order (unbalanced) or runs the
    balanced link once, fires the schedule entries due at this cycle count,
    then pauses. On exit the session is destroyed before the serial port is
    closed.
    """

    def __init__(self, session, transport, sequencer, stop_event: asyncio.Event, slaves=(), schedule=None,
                 pause=None):
        self.session = session
        self.transport = transport
        self.sequencer = sequencer
        self.stop_event = stop_event
        self.slaves = list(slaves)
        self.unbalanced = session.kind == TransportKind.SERIAL_UNBALANCED
        if schedule is None:
            schedule = UNBALANCED_SCHEDULE if self.unbalanced else BALANCED_SCHEDULE
        self.schedule = schedule
        if pause is None:
            pause = UNBALANCED_PAUSE if self.unbalanced else BALANCED_PAUSE
        self.pause = pause
        self.cycle = 0

    async def run(self):
        try:
            while not self.stop_event.is_set():
                if self.unbalanced:
                    for address in self.slaves:
                        self.session.poll_single_slave(address)
                        await self.session.run()
                else:
                    await self.session.run()
                await self.run_schedule()
                await asyncio.sleep(self.pause)
                self.cycle += 1
        except Exception as e:
            logger.error('cycle %s failed: %s', self.cycle, repr(e), exc_info=True)
        finally:
            self.session.destroy()
            self.transport.close()
            logger.info('exit after %s cycles', self.cycle)

    async def run_schedule(self):
        for cycle, operation, kwargs in self.schedule:
            if cycle != self.cycle:
                continue
            logger.info('cycle %s: %s %s', cycle, operation, kwargs)
            try:
                await getattr(self.sequencer, operation)(**kwargs)
            except Exception as e:
                logger.error('%s failed: %s', operation, repr(e), exc_info=True)
