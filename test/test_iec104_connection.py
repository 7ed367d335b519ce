import asyncio
import gc
import warnings
import unittest

from pyiecmaster.protocols.asdu import ASDU, QOI_STATION, TYP, Cause, InterrogationCommand
from pyiecmaster.protocols.iec104 import CS104Connection, ConnectionEvent
from pyiecmaster.protocols.iec104.frame import *


class IEC104ConnectionTest(unittest.IsolatedAsyncioTestCase):
    """Runs the connection against a minimal station on a local port."""

    async def asyncSetUp(self):
        self.received = list()
        self.ssn = 0
        self.hang_up = False
        self.station_eof = False
        self.server = await asyncio.start_server(self.handle_station, '127.0.0.1', 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def asyncTearDown(self):
        self.server.close()
        await self.server.wait_closed()

    async def handle_station(self, reader, writer):
        try:
            if self.hang_up:
                return
            while True:
                head = await reader.readexactly(2)
                data = head + await reader.readexactly(head[1])
                frame = iec_104.parse(data)
                self.received.append(frame)
                if frame.APCI1 == UFrame.STARTDT_ACT:
                    writer.write(iec_104.build(init_frame(UFrame.STARTDT_CON)))
                elif frame.APCI1 == UFrame.STOPDT_ACT:
                    writer.write(iec_104.build(init_frame(UFrame.STOPDT_CON)))
                elif frame_kind(frame) == 'I':
                    request = ASDU.parse(frame.ASDU)
                    reply = ASDU(request.type_id, Cause.actcon, request.common_address)
                    reply.add_element(InterrogationCommand(0, QOI_STATION))
                    writer.write(iec_104.build(init_frame(self.ssn, frame.APCI1 + 1, reply.build())))
                    self.ssn += 1
                await writer.drain()
        except asyncio.IncompleteReadError:
            self.station_eof = True
        except ConnectionResetError:
            pass
        finally:
            writer.close()

    @staticmethod
    async def wait_until(condition):
        for _ in range(200):
            if condition():
                return True
            await asyncio.sleep(0.01)
        return False

    async def test_start_and_interrogate(self):
        connection = CS104Connection('127.0.0.1', self.port)
        events = list()
        asdus = list()
        connection.set_connection_handler(lambda conn, event: events.append(event))
        connection.set_asdu_received_handler(lambda address, asdu: asdus.append((address, asdu.type_id, asdu.cause)))
        self.assertTrue(await connection.connect())
        self.assertTrue(await connection.send_start_dt())
        self.assertTrue(await self.wait_until(lambda: ConnectionEvent.STARTDT_CON_RECEIVED in events))
        self.assertTrue(await connection.send_interrogation_command(Cause.act, 1, QOI_STATION))
        self.assertTrue(await self.wait_until(lambda: asdus))
        self.assertEqual(asdus, [(None, TYP.C_IC_NA_1, Cause.actcon)])
        self.assertEqual(connection.k, 0)
        self.assertEqual(connection.rsn, 1)
        self.assertEqual(self.received[0].APCI1, UFrame.STARTDT_ACT)
        self.assertEqual(self.received[1].APCI1, 0)
        connection.destroy()
        await connection.wait_closed()
        self.assertEqual(events, [ConnectionEvent.OPENED, ConnectionEvent.STARTDT_CON_RECEIVED,
                                  ConnectionEvent.CLOSED])
        self.assertFalse(connection.connected)
        self.assertEqual(connection.timers, dict())

    async def test_send_before_connect(self):
        connection = CS104Connection('127.0.0.1', self.port)
        self.assertFalse(await connection.send_start_dt())
        self.assertFalse(await connection.send_read_command(1, 102))

    async def test_connect_refused(self):
        server = await asyncio.start_server(self.handle_station, '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        connection = CS104Connection('127.0.0.1', port)
        events = list()
        connection.set_connection_handler(lambda conn, event: events.append(event))
        self.assertFalse(await connection.connect())
        connection.destroy()
        self.assertEqual(events, [])

    async def test_closed_by_station(self):
        self.hang_up = True
        connection = CS104Connection('127.0.0.1', self.port)
        events = list()
        connection.set_connection_handler(lambda conn, event: events.append(event))
        self.assertTrue(await connection.connect())
        self.assertTrue(await self.wait_until(lambda: ConnectionEvent.CLOSED in events))
        self.assertFalse(connection.connected)
        connection.destroy()
        await connection.wait_closed()
        self.assertEqual(events, [ConnectionEvent.OPENED, ConnectionEvent.CLOSED])

    async def test_stop_data_transfer(self):
        connection = CS104Connection('127.0.0.1', self.port)
        events = list()
        connection.set_connection_handler(lambda conn, event: events.append(event))
        self.assertTrue(await connection.connect())
        self.assertTrue(await connection.send_start_dt())
        self.assertTrue(await self.wait_until(lambda: ConnectionEvent.STARTDT_CON_RECEIVED in events))
        self.assertTrue(await connection.send_stop_dt())
        self.assertIn('t1', connection.timers)
        self.assertTrue(await self.wait_until(lambda: ConnectionEvent.STOPDT_CON_RECEIVED in events))
        self.assertNotIn('t1', connection.timers)
        self.assertEqual(self.received[-1].APCI1, UFrame.STOPDT_ACT)
        self.assertTrue(connection.connected)
        connection.destroy()
        await connection.wait_closed()

    async def test_socket_closed_before_loop_ends(self):
        connection = CS104Connection('127.0.0.1', self.port)
        gc.collect()
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            self.assertTrue(await connection.connect())
            self.assertTrue(await connection.send_start_dt())
            connection.destroy()
            await connection.wait_closed()
            self.assertEqual(connection.closing, list())
            self.assertTrue(await self.wait_until(lambda: self.station_eof))
            gc.collect()
        self.assertEqual([w for w in caught if issubclass(w.category, ResourceWarning)], [])

    async def test_timer_tasks_kept_until_done(self):
        connection = CS104Connection('127.0.0.1', self.port)
        self.assertTrue(await connection.connect())
        connection.on_timer3()
        self.assertEqual(len(connection.pending), 1)
        self.assertTrue(await self.wait_until(lambda: not connection.pending))
        self.assertTrue(await self.wait_until(lambda: self.received))
        self.assertEqual(self.received[0].APCI1, UFrame.TESTFR_ACT)
        connection.destroy()
        await connection.wait_closed()
