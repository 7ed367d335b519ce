from .dispatcher import AsduDispatcher
from .monitor import EventMonitor, RawMessageLogger
from .sequencer import CommandSequencer
from .driver import OneShotDriver, Phase, PollingDriver
