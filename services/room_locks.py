import threading
from contextlib import contextmanager


class RoomLockRegistry:
    """Per-room exclusive locks for the booking check-and-flip.

    Serialises booking attempts on one room inside this process. Across
    processes the room row lock (SELECT ... FOR UPDATE) and the conditional
    status update do the same job.

    Entries are reference counted and dropped once no thread holds or waits
    on them, so unknown or one-off room ids do not accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, room_id: str) -> list:
        with self._guard:
            entry = self._locks.get(room_id)
            if entry is None:
                entry = self._locks[room_id] = [threading.Lock(), 0]
            entry[1] += 1
            return entry

    def _release_entry(self, room_id: str, entry: list) -> None:
        with self._guard:
            entry[1] -= 1
            if entry[1] == 0 and self._locks.get(room_id) is entry:
                del self._locks[room_id]

    @contextmanager
    def hold(self, room_id: str):
        entry = self._acquire_entry(room_id)
        try:
            with entry[0]:
                yield
        finally:
            self._release_entry(room_id, entry)
