import datetime
import unittest
from unittest import mock

from pyiecmaster.master.dispatcher import AsduDispatcher
from pyiecmaster.protocols.asdu import *

stamp = datetime.datetime(2021, 3, 4, 5, 6, 7, 890000)


def measured_asdu(count=3):
    asdu = ASDU(TYP.M_ME_TE_1, Cause.spont, 1)
    for index in range(count):
        asdu.add_element(MeasuredValueScaledWithCP56Time2a(100 + index, index * 10, Quality.GOOD, stamp))
    return ASDU.parse(asdu.build())


class AsduDispatcherTest(unittest.TestCase):
    def setUp(self):
        self.dispatcher = AsduDispatcher()

    def test_measured_values(self):
        asdu = measured_asdu()
        with mock.patch.object(MeasuredValueScaledWithCP56Time2a, 'release', autospec=True) as release:
            with self.assertLogs('AsduDispatcher', level='INFO') as log:
                self.assertTrue(self.dispatcher(None, asdu))
        self.assertEqual(len(log.records), 4)
        self.assertEqual(log.records[0].getMessage(), 'recv ASDU type: M_ME_TE_1(35) cot: spont elements: 3')
        self.assertEqual(log.records[2].getMessage(), 'IOA:101 value:10 time:2021-03-04 05:06:07.890000')
        self.assertEqual(log.records[3].ioa, 102)
        self.assertEqual(log.records[3].value, 20)
        self.assertEqual(log.records[3].timestamp, stamp)
        self.assertEqual(release.call_count, 3)
        self.assertEqual(asdu.outstanding, 0)

    def test_single_points_from_slave(self):
        asdu = ASDU(TYP.M_SP_NA_1, Cause.introgen, 1)
        asdu.add_element(SinglePointInformation(8, True))
        asdu.add_element(SinglePointInformation(9, False, Quality.INVALID))
        with self.assertLogs('AsduDispatcher', level='INFO') as log:
            self.dispatcher(2, ASDU.parse(asdu.build()))
        self.assertEqual([r.getMessage() for r in log.records], [
            'slave[2] recv ASDU type: M_SP_NA_1(1) cot: introgen elements: 2',
            'IOA:8 value:1',
            'IOA:9 value:0',
        ])
        self.assertEqual(log.records[2].quality, Quality.INVALID)

    def test_spontaneous_single_points_with_bad_element(self):
        # second element lost its SIQ octet
        asdu = ASDU.parse(b"\x01\x02\x03\x00\x01\x00\x64\x00\x00\x01\x65\x00\x00")
        with self.assertLogs('AsduDispatcher', level='INFO') as log:
            self.assertTrue(self.dispatcher(None, asdu))
        messages = [r.getMessage() for r in log.records]
        self.assertEqual(messages[:2], ['recv ASDU type: M_SP_NA_1(1) cot: spont elements: 2', 'IOA:100 value:1'])
        self.assertTrue(messages[2].startswith('invalid object!'))
        self.assertEqual(len(messages), 3)
        self.assertEqual(asdu.outstanding, 0)

    def test_protection_event(self):
        asdu = ASDU(TYP.M_EP_TD_1, Cause.spont, 1)
        asdu.add_element(EventOfProtectionEquipmentWithCP56Time2a(
                300, SingleEvent(EventState.ON, Quality.BLOCKED), 10, stamp))
        with self.assertLogs('AsduDispatcher', level='INFO') as log:
            self.dispatcher(None, ASDU.parse(asdu.build()))
        self.assertEqual(log.records[1].getMessage(), 'IOA:300 state:2 QDP:16')
        self.assertEqual(log.records[1].state, EventState.ON)
        self.assertEqual(log.records[1].qdp, Quality.BLOCKED)

    def test_invalid_object(self):
        data = measured_asdu().build()
        asdu = ASDU.parse(data[:-4])  # last element truncated
        with self.assertLogs('AsduDispatcher', level='INFO') as log:
            self.assertTrue(self.dispatcher(None, asdu))
        self.assertEqual(len(log.records), 4)
        self.assertTrue(log.records[3].getMessage().startswith('invalid object!'))
        self.assertEqual(log.records[3].levelname, 'WARNING')
        self.assertEqual(asdu.outstanding, 0)

    def test_unknown_type(self):
        asdu = ASDU(TYP.M_DP_NA_1, Cause.spont, 1, count=2, data=b"\x01\x00\x00\x01\x02\x00\x00\x02")
        with self.assertLogs('AsduDispatcher', level='INFO') as log:
            self.assertTrue(self.dispatcher(None, asdu))
        self.assertEqual([r.getMessage() for r in log.records],
                         ['recv ASDU type: M_DP_NA_1(3) cot: spont elements: 2'])

    def test_handler_error(self):
        asdu = measured_asdu(1)
        with mock.patch.object(ASDU, 'decoded', side_effect=RuntimeError('boom')):
            with self.assertLogs('AsduDispatcher', level='ERROR'):
                self.assertTrue(self.dispatcher(None, asdu))
