import threading

from stepflow.application.port import ResultStore
from stepflow.domain.entity import ExecutionResult


class InMemoryResultStore(ResultStore):
    """Latest result per step id, held in a lock-guarded dict."""

    def __init__(self):
        self._store: dict[str, ExecutionResult] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: ExecutionResult):
        """
        Store a result under the given key, replacing any previous one.

        :param key: The step id
        :type key: str
        :param value: The result to store
        :type value: ExecutionResult
        """
        with self._lock:
            self._store[key] = value

    def get(self, key: str) -> ExecutionResult:
        """
        Retrieve a result by key.

        :param key: The step id
        :type key: str
        :returns: The stored result
        :rtype: ExecutionResult
        :raises KeyError: If the key is not found
        """
        with self._lock:
            return self._store[key]

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)
