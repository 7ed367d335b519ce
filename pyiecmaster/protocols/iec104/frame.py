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

from construct import Byte, Bytes, Const, Container, ExprAdapter, Int16ul, Rebuild, Struct, this

from pyiecmaster.utils.read_config import config

IEC_60870_5_104_DEFAULT_PORT = 2404


class IECParam(IntEnum):
    # connect timeout
    T0 = config.getint('IEC104', 'T0', fallback=30)
    # wait for ack of a sent I frame or U frame
    T1 = config.getint('IEC104', 'T1', fallback=15)
    # ack received I frames at the latest after T2
    T2 = config.getint('IEC104', 'T2', fallback=10)
    # send TESTFR_ACT when nothing was received for T3
    T3 = config.getint('IEC104', 'T3', fallback=20)
    # max sent I frames not yet acknowledged
    K = config.getint('IEC104', 'K', fallback=12)
    # ack at the latest after receiving W I frames
    W = config.getint('IEC104', 'W', fallback=8)


class UFrame(IntEnum):
    TESTFR_CON = 0x83
    TESTFR_ACT = 0x43

    STOPDT_CON = 0x23
    STOPDT_ACT = 0x13

    STARTDT_CON = 0x0b
    STARTDT_ACT = 0x07


def _decode_apci1(obj, ctx):
    if obj & 1 == 0:
        return obj >> 1  # I frame: send sequence number
    if obj & 3 == 1:
        return "S"
    return UFrame(obj)


def _encode_apci1(obj, ctx):
    if isinstance(obj, UFrame):
        return int(obj)
    if obj == "S":
        return 1
    return obj << 1


iec_head = "iec104_head" / Struct(
    Const(b"\x68"),
    "length" / Byte,  # frame length without start byte and length byte
)

iec_104 = "iec104" / Struct(
    Const(b"\x68"),
    "length" / Rebuild(Byte, lambda ctx: 4 + len(ctx.ASDU or b"")),
    # I frame: ssn, S frame: "S", U frame: UFrame function
    "APCI1" / ExprAdapter(Int16ul, decoder=_decode_apci1, encoder=_encode_apci1),
    # I and S frames: rsn
    "APCI2" / ExprAdapter(Int16ul, decoder=lambda obj, ctx: obj >> 1, encoder=lambda obj, ctx: (obj or 0) << 1),
    # only I frames carry an ASDU
    "ASDU" / Bytes(this.length - 4),
)


def init_frame(apci1, apci2=0, asdu=b""):
    return Container(APCI1=apci1, APCI2=apci2, ASDU=asdu)


def frame_kind(frame):
    if isinstance(frame.APCI1, UFrame):
        return 'U'
    if frame.APCI1 == "S":
        return 'S'
    return 'I'
