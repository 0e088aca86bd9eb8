"""
Locking utilities.

Two kinds of locks live here:

- DaemonLock: a Unix socket-based lock that ensures only one runslot daemon
  runs at a time. Only one process can bind() a socket path, and the lock is
  released automatically when the process terminates.
- KeyedLock: in-process mutual exclusion scoped to a hashable key, so that
  operations on different keys never serialize behind each other.
"""

import os
import socket
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional

from runslot.utils.logging import get_logger

log = get_logger("lock")

# Socket path - in user's runtime dir or /tmp
_SOCKET_DIR = Path(os.environ.get("XDG_RUNTIME_DIR", "/tmp"))
_SOCKET_PATH = _SOCKET_DIR / "runslot-daemon.sock"

class DaemonLock:
    """
    Unix socket-based lock for ensuring single daemon instance.

    Detects and removes stale locks (socket files that exist but no
    process is listening on them) to handle crash recovery. Supports the
    context manager protocol.
    """

    def __init__(self, socket_path: Path = None):
        """
        Initialize the DaemonLock. Does not acquire the lock.

        :param socket_path: Optional custom path for the socket file.
                           Defaults to XDG_RUNTIME_DIR/runslot-daemon.sock
                           or /tmp/runslot-daemon.sock.
        """
        self.socket_path = socket_path or _SOCKET_PATH
        self._socket: Optional[socket.socket] = None

    def acquire(self) -> bool:
        """
        Attempt to acquire the daemon lock.

        :return: True if lock was acquired, False if another daemon is
                already running or acquisition failed.
        """
        if self._socket:
            return True

        try:
            if self.socket_path.exists():
                if self._is_socket_alive():
                    log.debug("Daemon already running (socket in use)")
                    return False
                log.debug("Removing stale socket file")
                self.socket_path.unlink()

            self._socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self._socket.bind(str(self.socket_path))
            self._socket.listen(1)
            self._socket.setblocking(False)

            log.debug(f"Daemon lock acquired: {self.socket_path}")
            return True

        except OSError as e:
            log.debug(f"Failed to acquire lock: {e}")
            if self._socket:
                self._socket.close()
                self._socket = None
            return False

    def release(self) -> None:
        """
        Release the daemon lock. Safe to call multiple times.
        """
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            # Only the holder removes the socket file
            try:
                self.socket_path.unlink()
            except FileNotFoundError:
                pass

        log.debug("Daemon lock released")

    def _is_socket_alive(self) -> bool:
        """
        Check whether a daemon is listening on the socket.

        :return: True if a connection succeeds, False for a stale socket file.
        """
        return is_daemon_running(self.socket_path, timeout=1)

    def __enter__(self) -> "DaemonLock":
        """
        Acquire the lock on entering a 'with' block.

        :raises RuntimeError: If the lock cannot be acquired.
        """
        if not self.acquire():
            raise RuntimeError("Could not acquire daemon lock - is another daemon running?")
        return self

    def __exit__(self, *args) -> None:
        self.release()

def is_daemon_running(socket_path: Path = None, timeout: float = 2) -> bool:
    """
    Check if the runslot daemon is currently running.

    :param socket_path: Optional custom socket path to check.
    :param timeout: Connection timeout in seconds.
    :return: True if daemon is running and responsive, False otherwise.
    """
    socket_path = socket_path or _SOCKET_PATH

    if not socket_path.exists():
        return False

    try:
        test_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        test_socket.settimeout(timeout)
        test_socket.connect(str(socket_path))
        test_socket.close()
        return True
    except OSError:
        return False


class _KeyEntry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


class KeyedLock:
    """
    A family of mutexes indexed by key.

    Each key gets its own lock, created on first use and dropped once no
    thread holds or waits for it. A key's lock is reentrant for the thread
    holding it. A short internal guard protects only the bookkeeping
    dictionary; it is never held while waiting on a key's lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _KeyEntry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """
        Hold the lock for a key for the duration of a 'with' block.

        :param key: Any hashable key.
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _KeyEntry()
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        """
        Number of keys currently held or waited on.
        """
        with self._guard:
            return len(self._entries)
