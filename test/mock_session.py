from pyiecmaster.protocols import BaseSession, TransportKind
from pyiecmaster.protocols.asdu import ASDU


class RecordingSession(BaseSession):
    """Session double: records every call in order, sends nothing."""

    def __init__(self, kind=TransportKind.SERIAL_UNBALANCED, accept=True, connect_result=True, io_loop=None):
        super(RecordingSession, self).__init__('recording', io_loop=io_loop)
        self.kind = kind
        self.accept = accept
        self.connect_result = connect_result
        self.calls = list()
        self.sent = list()
        self.selected = None

    async def connect(self):
        self.calls.append(('connect',))
        return self.connect_result

    async def send_start_dt(self):
        self.calls.append(('send_start_dt',))
        return self.accept

    def add_slave(self, address):
        self.calls.append(('add_slave', address))

    def use_slave_address(self, address):
        self.selected = address
        self.calls.append(('use_slave_address', address))

    def poll_single_slave(self, address):
        self.calls.append(('poll_single_slave', address))

    async def send_asdu(self, data):
        asdu = ASDU.parse(data, self.params)
        self.sent.append((self.selected, asdu))
        self.calls.append(('send_asdu', asdu.type_name))
        return self.accept

    async def run(self):
        self.calls.append(('run',))

    def destroy(self):
        self.calls.append(('destroy',))

    async def wait_closed(self):
        self.calls.append(('wait_closed',))


class RecordingTransport(object):
    def __init__(self, session):
        self.session = session

    def close(self):
        self.session.calls.append(('close',))
