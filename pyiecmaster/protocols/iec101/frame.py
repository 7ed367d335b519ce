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

from enum import IntEnum
from functools import lru_cache

from construct import (BitStruct, BitsInteger, Byte, Bytes, BytesInteger, Check, Checksum, Const, ConstructError,
                       Container, Flag, RawCopy, Rebuild, Struct, this)

SINGLE_CHAR_ACK = 0xe5
START_FIXED = 0x10
START_VARIABLE = 0x68


class PrimaryFunction(IntEnum):
    RESET_REMOTE_LINK = 0
    RESET_USER_PROCESS = 1
    TEST_FUNCTION_FOR_LINK = 2
    USER_DATA_CONFIRMED = 3
    USER_DATA_NO_REPLY = 4
    REQUEST_ACCESS_DEMAND = 8
    REQUEST_LINK_STATUS = 9
    REQUEST_USER_DATA_CLASS_1 = 10
    REQUEST_USER_DATA_CLASS_2 = 11


class SecondaryFunction(IntEnum):
    ACK = 0
    NACK = 1
    RESP_USER_DATA = 8
    RESP_NACK_NO_DATA = 9
    STATUS_OF_LINK_OR_ACCESS_DEMAND = 11
    LINK_SERVICE_NOT_FUNCTIONING = 14
    LINK_SERVICE_NOT_IMPLEMENTED = 15


# function codes with FCV set: each new request toggles FCB
FCV_FUNCTIONS = (PrimaryFunction.TEST_FUNCTION_FOR_LINK, PrimaryFunction.USER_DATA_CONFIRMED,
                 PrimaryFunction.REQUEST_USER_DATA_CLASS_1, PrimaryFunction.REQUEST_USER_DATA_CLASS_2)

ControlField = "control" / BitStruct(
    "DIR" / Flag,  # balanced: 1 from the controlling station, unbalanced: reserved
    "PRM" / Flag,  # 1 primary (request) 0 secondary (response)
    "FCB" / Flag,  # secondary frames: ACD, class 1 data available
    "FCV" / Flag,  # secondary frames: DFC, further messages cause overflow
    "function" / BitsInteger(4),
)


def _checksum(data):
    return sum(data) & 0xff


@lru_cache()
def fixed_frame(address_size):
    return "FT12Fixed" / Struct(
        Const(b"\x10"),
        "body" / RawCopy(Struct(
            "control" / ControlField,
            "address" / BytesInteger(address_size, swapped=True),
        )),
        "checksum" / Checksum(Byte, _checksum, this.body.data),
        Const(b"\x16"),
    )


@lru_cache()
def variable_frame(address_size):
    return "FT12Variable" / Struct(
        Const(b"\x68"),
        "length" / Rebuild(Byte, lambda ctx: 1 + address_size + len(ctx.body.value.asdu)),
        "length2" / Rebuild(Byte, this.length),
        Check(this.length == this.length2),
        Const(b"\x68"),
        "body" / RawCopy(Struct(
            "control" / ControlField,
            "address" / BytesInteger(address_size, swapped=True),
            "asdu" / Bytes(this._.length - 1 - address_size),
        )),
        "checksum" / Checksum(Byte, _checksum, this.body.data),
        Const(b"\x16"),
    )


def control_field(function, prm=True, fcb=False, fcv=False, direction=False):
    return Container(DIR=direction, PRM=prm, FCB=fcb, FCV=fcv, function=int(function))


def build_fixed(control, address, address_size=1):
    return fixed_frame(address_size).build(Container(body=Container(value=Container(
            control=control, address=address))))


def build_variable(control, address, asdu, address_size=1):
    return variable_frame(address_size).build(Container(body=Container(value=Container(
            control=control, address=address, asdu=asdu))))


def parse_frame(data, address_size=1):
    """
    :return: Container(kind, control, address, asdu), kind is 'single', 'fixed' or 'variable'
    :raise ConstructError: bad start byte, length or checksum
    """
    if not data:
        raise ConstructError('empty frame')
    if data[0] == SINGLE_CHAR_ACK:
        return Container(kind='single', control=None, address=None, asdu=None)
    if data[0] == START_FIXED:
        frame = fixed_frame(address_size).parse(data)
        return Container(kind='fixed', control=frame.body.value.control, address=frame.body.value.address,
                         asdu=None)
    if data[0] == START_VARIABLE:
        frame = variable_frame(address_size).parse(data)
        return Container(kind='variable', control=frame.body.value.control, address=frame.body.value.address,
                         asdu=frame.body.value.asdu)
    raise ConstructError('unknown start byte 0x{:02x}'.format(data[0]))
