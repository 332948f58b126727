import threading
from contextlib import contextmanager


class TillLockRegistry:
    """
    Um lock por terminal (till), criado sob demanda.

    Serializa, dentro do processo, os comandos de um mesmo caixa. Entre
    processos quem garante é o banco (índice único parcial + FOR UPDATE).
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def get(self, till_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(till_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[till_id] = lock
            return lock

    @contextmanager
    def hold(self, till_id: int):
        lock = self.get(till_id)
        with lock:
            yield


till_locks = TillLockRegistry()
