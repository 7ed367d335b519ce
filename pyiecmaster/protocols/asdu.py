#!/usr/bin/env python
#
# Copyright 2016 timercrack
#
# Licensed under the Apache License, Version 2.0 (the "License"); you may
# not use this file except in compliance with the License. You may obtain
# a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
# WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
# License for the specific language governing permissions and limitations
# under the License.

"""
Application layer shared by IEC 60870-5-101 and -104: type identifiers,
causes of transmission, CP56Time2a, the ASDU envelope and the information
objects this master decodes or sends.

Elements are decoded lazily and one at a time, see :meth:`ASDU.decoded`.
"""

import contextlib
import datetime
from collections import namedtuple
from enum import IntEnum, IntFlag
from functools import lru_cache

from construct import (BitStruct, BitsInteger, Byte, BytesInteger, ConstructError, Flag, GreedyBytes, If, Int16sl,
                       Int16ul, Padding, Struct)


class TYP(IntEnum):
    # process information in monitor direction
    M_SP_NA_1 = 1  # single point information
    M_SP_TA_1 = 2  # single point information with time tag
    M_DP_NA_1 = 3  # double point information
    M_DP_TA_1 = 4  # double point information with time tag
    M_ST_NA_1 = 5  # step position information
    M_ST_TA_1 = 6  # step position information with time tag
    M_BO_NA_1 = 7  # bitstring of 32 bit
    M_BO_TA_1 = 8  # bitstring of 32 bit with time tag
    M_ME_NA_1 = 9  # measured value, normalized value
    M_ME_TA_1 = 10  # measured value, normalized value with time tag
    M_ME_NB_1 = 11  # measured value, scaled value
    M_ME_TB_1 = 12  # measured value, scaled value with time tag
    M_ME_NC_1 = 13  # measured value, short floating point number
    M_ME_TC_1 = 14  # measured value, short floating point number with time tag
    M_IT_NA_1 = 15  # integrated totals
    M_IT_TA_1 = 16  # integrated totals with time tag
    M_EP_TA_1 = 17  # event of protection equipment with time tag
    M_EP_TB_1 = 18  # packed start events of protection equipment with time tag
    M_EP_TC_1 = 19  # packed output circuit information of protection equipment with time tag
    M_PS_NA_1 = 20  # packed single point information with status change detection
    M_ME_ND_1 = 21  # measured value, normalized value without quality descriptor
    M_SP_TB_1 = 30  # single point information with CP56Time2a
    M_DP_TB_1 = 31  # double point information with CP56Time2a
    M_ST_TB_1 = 32  # step position information with CP56Time2a
    M_BO_TB_1 = 33  # bitstring of 32 bit with CP56Time2a
    M_ME_TD_1 = 34  # measured value, normalized value with CP56Time2a
    M_ME_TE_1 = 35  # measured value, scaled value with CP56Time2a
    M_ME_TF_1 = 36  # measured value, short floating point number with CP56Time2a
    M_IT_TB_1 = 37  # integrated totals with CP56Time2a
    M_EP_TD_1 = 38  # event of protection equipment with CP56Time2a
    M_EP_TE_1 = 39  # packed start events of protection equipment with CP56Time2a
    M_EP_TF_1 = 40  # packed output circuit information of protection equipment with CP56Time2a
    # process information in control direction
    C_SC_NA_1 = 45  # single command
    C_DC_NA_1 = 46  # double command
    C_RC_NA_1 = 47  # regulating step command
    C_SE_NA_1 = 48  # set point command, normalized value
    C_SE_NB_1 = 49  # set point command, scaled value
    C_SE_NC_1 = 50  # set point command, short floating point number
    C_BO_NA_1 = 51  # bitstring of 32 bit
    C_SC_TA_1 = 58  # single command with CP56Time2a
    C_DC_TA_1 = 59  # double command with CP56Time2a
    C_RC_TA_1 = 60  # regulating step command with CP56Time2a
    C_SE_TA_1 = 61  # set point command, normalized value with CP56Time2a
    C_SE_TB_1 = 62  # set point command, scaled value with CP56Time2a
    C_SE_TC_1 = 63  # set point command, short floating point number with CP56Time2a
    C_BO_TA_1 = 64  # bitstring of 32 bit with CP56Time2a
    # system information in monitor direction
    M_EI_NA_1 = 70  # end of initialization
    # system information in control direction
    C_IC_NA_1 = 100  # interrogation command
    C_CI_NA_1 = 101  # counter interrogation command
    C_RD_NA_1 = 102  # read command
    C_CS_NA_1 = 103  # clock synchronization command
    C_TS_NA_1 = 104  # test command
    C_RP_NA_1 = 105  # reset process command
    C_TS_TA_1 = 107  # test command with CP56Time2a


class Cause(IntEnum):
    unused = 0
    percyc = 1  # periodic, cyclic
    back = 2  # background scan
    spont = 3  # spontaneous
    init = 4  # initialized
    req = 5  # request or requested
    act = 6  # activation
    actcon = 7  # activation confirmation
    deact = 8  # deactivation
    deactcon = 9  # deactivation confirmation
    actterm = 10  # activation termination
    retrem = 11  # return information caused by a remote command
    retloc = 12  # return information caused by a local command
    file = 13  # file transfer
    introgen = 20  # interrogated by station interrogation
    inro1 = 21
    inro2 = 22
    inro3 = 23
    inro4 = 24
    inro5 = 25
    inro6 = 26
    inro7 = 27
    inro8 = 28
    inro9 = 29
    inro10 = 30
    inro11 = 31
    inro12 = 32
    inro13 = 33
    inro14 = 34
    inro15 = 35
    inro16 = 36
    reqcogen = 37  # requested by general counter request
    reqco1 = 38
    reqco2 = 39
    reqco3 = 40
    reqco4 = 41
    badtyp = 44  # unknown type identification
    badre = 45  # unknown cause of transmission
    badad = 46  # unknown common address of ASDU
    badad2 = 47  # unknown information object address


# qualifier of interrogation
QOI_STATION = 20


class Quality(IntFlag):
    GOOD = 0
    OVERFLOW = 0x01
    ELAPSED_TIME_INVALID = 0x08
    BLOCKED = 0x10
    SUBSTITUTED = 0x20
    NON_TOPICAL = 0x40
    INVALID = 0x80


class EventState(IntEnum):
    INDETERMINATE_OR_INTERMEDIATE = 0
    OFF = 1
    ON = 2
    INDETERMINATE = 3


SingleEvent = namedtuple('SingleEvent', 'state qdp')

AppLayerParameters = namedtuple('AppLayerParameters', 'size_of_cot originator_address size_of_ca size_of_ioa',
                                defaults=(2, 0, 2, 3))
DEFAULT_PARAMS = AppLayerParameters()

# binary time, 7 octets
CP56Time2a = "CP56Time2a" / Struct(
    "Millisecond" / Int16ul,  # 0~59999
    "Clock" / BitStruct(
        "IV" / Flag,
        Padding(1),
        "Minute" / BitsInteger(6),  # 0~59
        "SU" / Flag,  # summer time
        Padding(2),
        "Hour" / BitsInteger(5),  # 0~23
        "Week" / BitsInteger(3),  # 1~7, 0 unused
        "Day" / BitsInteger(5),  # 1~31
        Padding(4),
        "Month" / BitsInteger(4),  # 1~12
        Padding(1),
        "Year" / BitsInteger(7),  # 0~99
    ),
)


def encode_cp56time2a(now=None):
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    return dict(Millisecond=now.second * 1000 + now.microsecond // 1000,
                Clock=dict(IV=False, Minute=now.minute, SU=False, Hour=now.hour, Week=now.isoweekday(),
                           Day=now.day, Month=now.month, Year=now.year % 100))


def decode_cp56time2a(obj):
    """Naive datetime of a parsed CP56Time2a, None when the fields are out of range."""
    try:
        return datetime.datetime(year=obj.Clock.Year + 2000, month=obj.Clock.Month, day=obj.Clock.Day,
                                 hour=obj.Clock.Hour, minute=obj.Clock.Minute,
                                 second=obj.Millisecond // 1000,
                                 microsecond=obj.Millisecond % 1000 * 1000)
    except ValueError:
        return None


@lru_cache()
def ioa_field(size):
    return BytesInteger(size, swapped=True)


@lru_cache()
def asdu_header(params):
    return "ASDU" / Struct(
        "TYP" / Byte,
        # variable structure qualifier
        "VSQ" / BitStruct(
            "sq" / Flag,  # 1: one address followed by consecutive elements
            "sq_count" / BitsInteger(7),
        ),
        "COT" / BitStruct(
            "T" / Flag,  # test
            "PN" / Flag,  # negative confirm
            "Cause" / BitsInteger(6),
        ),
        "OA" / If(params.size_of_cot == 2, Byte),
        "GlobalAddress" / BytesInteger(params.size_of_ca, swapped=True),
        "data" / GreedyBytes,
    )


class InformationObject(object):
    TYPE_ID = None
    BODY = Struct()

    def __init__(self, address):
        self.address = address
        self.released = False

    @classmethod
    def from_body(cls, address, body):
        raise NotImplementedError

    def to_body(self):
        raise NotImplementedError

    def release(self):
        self.released = True

    def __repr__(self):
        fields = ', '.join('{}={!r}'.format(k, v) for k, v in vars(self).items() if k != 'released')
        return '{}({})'.format(type(self).__name__, fields)


class SinglePointInformation(InformationObject):
    TYPE_ID = TYP.M_SP_NA_1
    BODY = Struct("SIQ" / Byte)

    def __init__(self, address, value, quality=Quality.GOOD):
        super().__init__(address)
        self.value = value
        self.quality = quality

    @classmethod
    def from_body(cls, address, body):
        return cls(address, bool(body.SIQ & 0x01), Quality(body.SIQ & 0xf0))

    def to_body(self):
        return dict(SIQ=int(self.value) | int(self.quality))


class MeasuredValueScaledWithCP56Time2a(InformationObject):
    TYPE_ID = TYP.M_ME_TE_1
    BODY = Struct(
        "SVA" / Int16sl,
        "QDS" / Byte,
        "time" / CP56Time2a,
    )

    def __init__(self, address, value, quality=Quality.GOOD, timestamp=None):
        super().__init__(address)
        self.value = value
        self.quality = quality
        self.timestamp = timestamp

    @classmethod
    def from_body(cls, address, body):
        return cls(address, body.SVA, Quality(body.QDS & 0xf1), decode_cp56time2a(body.time))

    def to_body(self):
        return dict(SVA=self.value, QDS=int(self.quality), time=encode_cp56time2a(self.timestamp))


class EventOfProtectionEquipmentWithCP56Time2a(InformationObject):
    TYPE_ID = TYP.M_EP_TD_1
    BODY = Struct(
        "SEP" / Byte,  # single event of protection equipment
        "CP16Time2a" / Int16ul,  # elapsed time in ms
        "time" / CP56Time2a,
    )

    def __init__(self, address, event, elapsed_time=0, timestamp=None):
        super().__init__(address)
        self.event = event
        self.elapsed_time = elapsed_time
        self.timestamp = timestamp

    @classmethod
    def from_body(cls, address, body):
        event = SingleEvent(EventState(body.SEP & 0x03), Quality(body.SEP & 0xf8))
        return cls(address, event, body.CP16Time2a, decode_cp56time2a(body.time))

    def to_body(self):
        return dict(SEP=int(self.event.state) | int(self.event.qdp), CP16Time2a=self.elapsed_time,
                    time=encode_cp56time2a(self.timestamp))


class SingleCommand(InformationObject):
    TYPE_ID = TYP.C_SC_NA_1
    BODY = Struct("SCO" / BitStruct(
        "SE" / Flag,  # 0 execute 1 select
        "QU" / BitsInteger(5),  # 0 no definition 1 short pulse 2 long pulse 3 persistent
        Padding(1),
        "SCS" / Flag,  # 0 off 1 on
    ))

    def __init__(self, address, state, select=False, qu=0):
        super().__init__(address)
        self.state = state
        self.select = select
        self.qu = qu

    @classmethod
    def from_body(cls, address, body):
        return cls(address, body.SCO.SCS, body.SCO.SE, body.SCO.QU)

    def to_body(self):
        return dict(SCO=dict(SE=self.select, QU=self.qu, SCS=self.state))


class InterrogationCommand(InformationObject):
    TYPE_ID = TYP.C_IC_NA_1
    BODY = Struct("QOI" / Byte)

    def __init__(self, address=0, qoi=QOI_STATION):
        super().__init__(address)
        self.qoi = qoi

    @classmethod
    def from_body(cls, address, body):
        return cls(address, body.QOI)

    def to_body(self):
        return dict(QOI=self.qoi)


class ReadCommand(InformationObject):
    TYPE_ID = TYP.C_RD_NA_1

    @classmethod
    def from_body(cls, address, body):
        return cls(address)

    def to_body(self):
        return dict()


class ClockSynchronizationCommand(InformationObject):
    TYPE_ID = TYP.C_CS_NA_1
    BODY = Struct("time" / CP56Time2a)

    def __init__(self, address=0, timestamp=None):
        super().__init__(address)
        self.timestamp = timestamp

    @classmethod
    def from_body(cls, address, body):
        return cls(address, decode_cp56time2a(body.time))

    def to_body(self):
        return dict(time=encode_cp56time2a(self.timestamp))


typ_dict = {cls.TYPE_ID: cls for cls in (
    SinglePointInformation, MeasuredValueScaledWithCP56Time2a, EventOfProtectionEquipmentWithCP56Time2a,
    SingleCommand, InterrogationCommand, ReadCommand, ClockSynchronizationCommand)}


def _to_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return value


class ASDU(object):
    """
    One application service data unit.

    The envelope is parsed eagerly, the information objects are not: they stay
    as raw bytes in ``data`` until a caller asks for one by index.
    """

    def __init__(self, type_id, cause, common_address, params=DEFAULT_PARAMS, sequence=False, count=0, data=b'',
                 originator_address=None, test=False, negative=False):
        self.params = params
        self.type_id = _to_enum(TYP, type_id)
        self.cause = _to_enum(Cause, cause)
        self.common_address = common_address
        self.originator_address = params.originator_address if originator_address is None else originator_address
        self.sequence = sequence
        self.count = count
        self.data = data
        self.test = test
        self.negative = negative
        self._outstanding = 0

    @classmethod
    def parse(cls, raw, params=DEFAULT_PARAMS):
        """:raise ConstructError: when the envelope itself is truncated"""
        head = asdu_header(params).parse(raw)
        return cls(head.TYP, head.COT.Cause, head.GlobalAddress, params=params, sequence=head.VSQ.sq,
                   count=head.VSQ.sq_count, data=head.data,
                   originator_address=head.OA if head.OA is not None else 0,
                   test=head.COT.T, negative=head.COT.PN)

    def build(self):
        return asdu_header(self.params).build(dict(
            TYP=int(self.type_id),
            VSQ=dict(sq=self.sequence, sq_count=self.count),
            COT=dict(T=self.test, PN=self.negative, Cause=int(self.cause)),
            OA=self.originator_address if self.params.size_of_cot == 2 else None,
            GlobalAddress=self.common_address,
            data=self.data,
        ))

    @property
    def type_name(self):
        return getattr(self.type_id, 'name', 'UNKNOWN')

    @property
    def cause_name(self):
        return getattr(self.cause, 'name', str(self.cause))

    @property
    def number_of_elements(self):
        return self.count

    @property
    def outstanding(self):
        """Number of decoded elements not yet released."""
        return self._outstanding

    def add_element(self, io):
        self.data += ioa_field(self.params.size_of_ioa).build(io.address) + io.BODY.build(io.to_body())
        self.count += 1

    def get_element(self, index):
        """
        Decode element ``index``.

        :return: an InformationObject, or None when the type is not supported
                 or the element bytes are missing or malformed
        """
        io_class = typ_dict.get(self.type_id)
        if io_class is None or not 0 <= index < self.count:
            return None
        ioa_size = self.params.size_of_ioa
        body_size = io_class.BODY.sizeof()
        try:
            if self.sequence:
                address = ioa_field(ioa_size).parse(self.data[:ioa_size]) + index
                start = ioa_size + index * body_size
            else:
                start = index * (ioa_size + body_size)
                address = ioa_field(ioa_size).parse(self.data[start:start + ioa_size])
                start += ioa_size
            return io_class.from_body(address, io_class.BODY.parse(self.data[start:start + body_size]))
        except ConstructError:
            return None

    @contextlib.contextmanager
    def decoded(self, index):
        """
        Scoped access to one element: yields the decoded object (or None) and
        releases it when the block exits, however it exits.
        """
        io = self.get_element(index)
        if io is None:
            yield None
            return
        self._outstanding += 1
        try:
            yield io
        finally:
            self._outstanding -= 1
            io.release()

    def __repr__(self):
        return 'ASDU(type={}({}), cause={}, ca={}, elements={})'.format(
            self.type_name, int(self.type_id), self.cause_name, self.common_address, self.count)
