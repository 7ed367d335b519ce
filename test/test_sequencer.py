import datetime
import unittest

from pyiecmaster.master.sequencer import CommandSequencer
from pyiecmaster.protocols import TransportKind
from pyiecmaster.protocols.asdu import QOI_STATION, TYP, Cause
from mock_session import RecordingSession


class UnbalancedSequencerTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = RecordingSession(TransportKind.SERIAL_UNBALANCED)
        self.sequencer = CommandSequencer(self.session)

    async def test_select_precedes_send(self):
        self.assertTrue(await self.sequencer.interrogate(slave=1))
        self.assertTrue(await self.sequencer.read(102, slave=2))
        self.assertTrue(await self.sequencer.direct_operate(5000, slave=1))
        self.assertEqual(self.session.calls, [
            ('use_slave_address', 1), ('send_asdu', 'C_IC_NA_1'),
            ('use_slave_address', 2), ('send_asdu', 'C_RD_NA_1'),
            ('use_slave_address', 1), ('send_asdu', 'C_SC_NA_1'),
        ])
        self.assertEqual([slave for slave, _ in self.session.sent], [1, 2, 1])

    async def test_slave_required(self):
        with self.assertRaises(ValueError):
            await self.sequencer.interrogate()
        with self.assertRaises(ValueError):
            await self.sequencer.clock_sync()
        self.assertEqual(self.session.calls, [])

    async def test_interrogation_payload(self):
        await self.sequencer.interrogate(slave=1)
        _, asdu = self.session.sent[0]
        self.assertEqual(asdu.cause, Cause.act)
        self.assertEqual(asdu.common_address, 1)
        self.assertEqual(asdu.get_element(0).qoi, QOI_STATION)

    async def test_single_command_payload(self):
        await self.sequencer.direct_operate(5000, True, slave=1)
        _, asdu = self.session.sent[0]
        with asdu.decoded(0) as io:
            self.assertEqual(io.address, 5000)
            self.assertTrue(io.state)
            self.assertFalse(io.select)
            self.assertEqual(io.qu, 0)

    async def test_read_payload(self):
        await self.sequencer.read(102, slave=1)
        _, asdu = self.session.sent[0]
        self.assertEqual(asdu.type_id, TYP.C_RD_NA_1)
        self.assertEqual(asdu.cause, Cause.req)
        self.assertEqual(asdu.get_element(0).address, 102)

    async def test_clock_sync_payload(self):
        now = datetime.datetime(2020, 1, 2, 3, 4, 5, 6000)
        await self.sequencer.clock_sync(slave=1, now=now)
        _, asdu = self.session.sent[0]
        self.assertEqual(asdu.type_id, TYP.C_CS_NA_1)
        self.assertEqual(asdu.cause, Cause.act)
        self.assertEqual(asdu.get_element(0).timestamp, now)

    async def test_failed_send(self):
        self.session.accept = False
        with self.assertLogs('CommandSequencer', level='ERROR'):
            self.assertFalse(await self.sequencer.direct_operate(5000, slave=1))
        self.assertEqual(len(self.session.sent), 1)


class NetworkedSequencerTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = RecordingSession(TransportKind.NETWORKED)
        self.sequencer = CommandSequencer(self.session)

    async def test_refused_before_start(self):
        with self.assertLogs('CommandSequencer', level='ERROR'):
            self.assertFalse(await self.sequencer.interrogate())
        self.assertEqual(self.session.calls, [])

    async def test_start_then_commands(self):
        self.assertTrue(await self.sequencer.start_data_transfer())
        self.assertTrue(await self.sequencer.interrogate())
        self.assertTrue(await self.sequencer.clock_sync())
        self.assertEqual(self.session.calls, [
            ('send_start_dt',), ('send_asdu', 'C_IC_NA_1'), ('send_asdu', 'C_CS_NA_1')])

    async def test_start_failed(self):
        self.session.accept = False
        with self.assertLogs('CommandSequencer', level='ERROR'):
            self.assertFalse(await self.sequencer.start_data_transfer())
        self.assertFalse(self.sequencer.started)


class BalancedSequencerTest(unittest.IsolatedAsyncioTestCase):
    async def test_no_slave_needed(self):
        session = RecordingSession(TransportKind.SERIAL_BALANCED)
        sequencer = CommandSequencer(session)
        self.assertTrue(await sequencer.interrogate())
        self.assertEqual(session.calls, [('send_asdu', 'C_IC_NA_1')])
