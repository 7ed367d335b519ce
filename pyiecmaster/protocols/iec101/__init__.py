from .frame import PrimaryFunction, SecondaryFunction, SINGLE_CHAR_ACK
from .port import DEFAULT_SERIAL_DEVICE, SerialPort
from .master import CS101Master, LinkLayerMode, LinkLayerParameters, LinkLayerState
