
from collections import OrderedDict
from threading import Lock
from typing import Hashable, Optional

class ResolverCache:
    """Bounded LRU memo for resolved values.

    Concurrent writers for the same key always store the same value, so the
    lock only guards the LRU bookkeeping.
    """

    def __init__(self, maxsize: int = 4096):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._data: "OrderedDict[Hashable, str]" = OrderedDict()
        self._lock = Lock()

    def get(self, key: Hashable) -> Optional[str]:
        with self._lock:
            if key not in self._data:
                return None
            self._data.move_to_end(key)
            return self._data[key]

    def set(self, key: Hashable, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data
