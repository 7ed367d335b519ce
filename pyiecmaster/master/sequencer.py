from pyiecmaster.protocols import TransportKind
from pyiecmaster.protocols.asdu import QOI_STATION, Cause, SingleCommand
import pyiecmaster.utils.logger as my_logger

logger = my_logger.get_logger('CommandSequencer')


class CommandSequencer(object):
    """
    Supervisory commands of the master programs.

    On an unbalanced session every command names its slave, and the slave is
    selected right before the send so nothing else can change the target in
    between. Every command returns whether the session accepted it.
    """

    def __init__(self, session, common_address: int = 1):
        self.session = session
        self.common_address = common_address
        self.started = False

    def select(self, slave, operation):
        if self.session.kind == TransportKind.SERIAL_UNBALANCED:
            if slave is None:
                raise ValueError('{} on an unbalanced session needs a slave address'.format(operation))
            self.session.use_slave_address(slave)
        elif self.session.kind == TransportKind.SERIAL_BALANCED and slave is not None:
            self.session.use_slave_address(slave)

    def ready(self, operation):
        if self.session.kind == TransportKind.NETWORKED and not self.started:
            logger.error('%s refused: data transfer not started', operation)
            return False
        return True

    @staticmethod
    def check(result, operation):
        if not result:
            logger.error('send %s failed', operation)
        return bool(result)

    async def start_data_transfer(self):
        if self.session.kind != TransportKind.NETWORKED:
            logger.error('start data transfer on a serial session')
            return False
        if self.started:
            logger.warning('data transfer already started')
            return True
        self.started = self.check(await self.session.send_start_dt(), 'STARTDT_ACT')
        return self.started

    async def interrogate(self, slave=None, qoi=QOI_STATION):
        if not self.ready('interrogation command'):
            return False
        self.select(slave, 'interrogation command')
        return self.check(await self.session.send_interrogation_command(Cause.act, self.common_address, qoi),
                          'interrogation command')

    async def direct_operate(self, ioa, state=True, select=False, qu=0, slave=None):
        if not self.ready('single command'):
            return False
        self.select(slave, 'single command')
        command = SingleCommand(ioa, state, select, qu)
        return self.check(await self.session.send_process_command(Cause.act, self.common_address, command),
                          'single command')

    async def clock_sync(self, slave=None, now=None):
        if not self.ready('clock synchronization'):
            return False
        self.select(slave, 'clock synchronization')
        return self.check(await self.session.send_clock_sync_command(self.common_address, now),
                          'clock synchronization')

    async def read(self, ioa, slave=None):
        if not self.ready('read command'):
            return False
        self.select(slave, 'read command')
        return self.check(await self.session.send_read_command(self.common_address, ioa), 'read command')
