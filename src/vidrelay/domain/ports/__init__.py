from .cache import CachePort
from .remux import RemuxProcessPort, TransmuxerPort

__all__ = ["CachePort", "RemuxProcessPort", "TransmuxerPort"]
