from .frame import IEC_60870_5_104_DEFAULT_PORT, IECParam, UFrame
from .connection import CS104Connection, ConnectionEvent
