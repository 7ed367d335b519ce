import asyncio
import datetime

from redis import asyncio as aioredis

from pyiecmaster.protocols.iec104 import ConnectionEvent
from pyiecmaster.utils import to_hex
from pyiecmaster.utils.read_config import config
import pyiecmaster.utils.logger as my_logger

logger = my_logger.get_logger('EventMonitor')

connection_messages = {
    ConnectionEvent.OPENED: 'Connection established',
    ConnectionEvent.CLOSED: 'Connection closed',
    ConnectionEvent.STARTDT_CON_RECEIVED: 'Received STARTDT_CON',
    ConnectionEvent.STOPDT_CON_RECEIVED: 'Received STOPDT_CON',
}


class EventMonitor(object):
    """Logs connection and link layer events, keeps no state of its own."""

    def on_connection_event(self, connection, event):
        logger.info('connection[%s] %s', connection.name, connection_messages.get(event, event))

    def on_link_layer_state(self, address, state):
        logger.info('Link layer state of slave %s: %s', address, state.name)


class RawMessageLogger(object):
    """
    Raw message handler: logs every frame as hex and, with ``[MASTER] record_frame``,
    appends it to the redis list ``LST:FRAME:<name>``.
    """

    def __init__(self, name: str, record: bool = None, io_loop: asyncio.AbstractEventLoop = None):
        self.name = name
        self.io_loop = io_loop
        self.record = config.getboolean('MASTER', 'record_frame', fallback=False) if record is None else record
        self.redis_client = None
        if self.record:
            self.redis_client = aioredis.Redis(host=config.get('REDIS', 'host', fallback='127.0.0.1'),
                                               port=config.getint('REDIS', 'port', fallback=6379),
                                               db=config.getint('REDIS', 'db', fallback=1), decode_responses=True)
        self.pending = set()

    def __call__(self, data, sent):
        logger.info('%s: %s', 'SEND' if sent else 'RCVD', to_hex(data))
        if self.redis_client is None:
            return
        io_loop = self.io_loop or asyncio.get_event_loop()
        task = io_loop.create_task(self.save_frame(data, sent, datetime.datetime.now()))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    async def save_frame(self, frame, send, save_time):
        try:
            await self.redis_client.rpush('LST:FRAME:{}'.format(self.name), '{time},{type},{frame}'.format(
                    time=save_time.isoformat(), type='send' if send else 'recv', frame=frame.hex()))
        except Exception as e:
            logger.error('session[%s] save_frame failed: %s', self.name, repr(e))

    async def close(self):
        if self.pending:
            await asyncio.gather(*self.pending, return_exceptions=True)
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
