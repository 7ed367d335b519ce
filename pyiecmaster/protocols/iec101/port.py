import serial

import pyiecmaster.utils.logger as my_logger

logger = my_logger.get_logger('SerialPort')

DEFAULT_SERIAL_DEVICE = '/dev/ttyUSB0'
BAUD_RATE = 9600
DATA_BITS = 8
PARITY = serial.PARITY_EVEN
STOP_BITS = serial.STOPBITS_ONE


class SerialPort(object):
    """Serial line of a 101 link; opened and closed by the owner, not by the master."""

    def __init__(self, device: str = DEFAULT_SERIAL_DEVICE, baud_rate: int = BAUD_RATE, data_bits: int = DATA_BITS,
                 parity: str = PARITY, stop_bits: int = STOP_BITS, timeout: float = 0.5):
        self.device = device
        self.serial = serial.Serial()
        self.serial.port = device
        self.serial.baudrate = baud_rate
        self.serial.bytesize = data_bits
        self.serial.parity = parity
        self.serial.stopbits = stop_bits
        self.serial.timeout = timeout

    def open(self):
        try:
            self.serial.open()
            logger.info('serial port %s opened', self.device)
            return True
        except serial.SerialException as e:
            logger.error('open serial port %s failed: %s', self.device, repr(e))
            return False

    def close(self):
        if self.serial.is_open:
            self.serial.close()
            logger.info('serial port %s closed', self.device)

    def read(self, size):
        """Read up to ``size`` bytes, returns fewer when the timeout expires."""
        return self.serial.read(size)

    def write(self, data):
        self.serial.write(data)
        self.serial.flush()

    def bytes_waiting(self):
        return self.serial.in_waiting

    def discard_input(self):
        self.serial.reset_input_buffer()
