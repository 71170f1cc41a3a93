"""
pytest configuration and fixtures.
"""

import socket
import threading
from collections import deque
from typing import Callable, Dict, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bloomd.core.connection import Connection


class FakeBloomd:
    """
    In-process bloomd stand-in running in background threads.

    Filters are plain Python sets, so there are no false positives.

    Knobs:
        stalled: When set, commands are read but never answered.
        inject(line): Answer the next command with `line` verbatim.
    """

    def __init__(self):
        self.filters: Dict[str, set] = {}
        self.commands: List[str] = []
        self.stalled = threading.Event()

        self.open_connections = 0
        self.peak_connections = 0
        self.total_connections = 0

        self._canned: deque = deque()
        self._lock = threading.Lock()
        self._running = False
        self._listener: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._clients: List[socket.socket] = []

    @property
    def address(self) -> str:
        host, port = self._listener.getsockname()
        return f"{host}:{port}"

    def start(self):
        """Start accepting connections in a background thread."""
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(64)
        self._running = True
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the server and drop every client socket."""
        self._running = False
        try:
            self._listener.close()
        except OSError:
            pass
        with self._lock:
            clients = list(self._clients)
        for client in clients:
            try:
                client.shutdown(socket.SHUT_RDWR)
                client.close()
            except OSError:
                pass
        if self._thread:
            self._thread.join(timeout=2.0)

    def inject(self, line: str):
        """Reply to the next command with `line` instead of executing it."""
        with self._lock:
            self._canned.append(line)

    def _accept_loop(self):
        while self._running:
            try:
                client, _ = self._listener.accept()
            except OSError:
                return
            with self._lock:
                self._clients.append(client)
                self.open_connections += 1
                self.total_connections += 1
                self.peak_connections = max(self.peak_connections, self.open_connections)
            threading.Thread(target=self._serve, args=(client,), daemon=True).start()

    def _serve(self, client: socket.socket):
        buffer = b""
        try:
            while self._running:
                try:
                    chunk = client.recv(4096)
                except OSError:
                    return
                if not chunk:
                    return
                buffer += chunk
                while b"\n" in buffer:
                    raw, _, buffer = buffer.partition(b"\n")
                    line = raw.decode().strip()
                    with self._lock:
                        self.commands.append(line)
                        canned = self._canned.popleft() if self._canned else None
                    if canned is not None:
                        reply = canned
                    elif self.stalled.is_set():
                        continue
                    else:
                        reply = self.execute(line)
                    try:
                        client.sendall(reply.encode() + b"\n")
                    except OSError:
                        return
        finally:
            with self._lock:
                self.open_connections -= 1
                if client in self._clients:
                    self._clients.remove(client)
            try:
                client.close()
            except OSError:
                pass

    def execute(self, line: str) -> str:
        """Run one command against the in-memory filters."""
        parts = line.split()
        if not parts:
            return "Client Error: Command not supported"
        verb, args = parts[0], parts[1:]

        with self._lock:
            if verb == "list":
                rows = [
                    f"{name} 0.000100 300046 100000 {len(keys)}"
                    for name, keys in self.filters.items()
                ]
                return "\n".join(["START"] + rows + ["END"])

            if verb == "flush":
                if args and args[0] not in self.filters:
                    return "Filter does not exist"
                return "Done"

            if not args:
                return "Client Error: Must provide filter name"
            name = args[0]

            if verb == "create":
                if name in self.filters:
                    return "Exists"
                self.filters[name] = set()
                return "Done"

            if name not in self.filters:
                return "Filter does not exist"
            keys = self.filters[name]

            if verb == "drop":
                del self.filters[name]
                return "Done"
            if verb in ("close", "clear"):
                return "Done"
            if verb == "info":
                return "\n".join([
                    "START",
                    "capacity 100000",
                    "checks 0",
                    "probability 0.000100",
                    f"size {len(keys)}",
                    "END",
                ])

            if verb in ("c", "s", "m", "b"):
                if len(args) < 2:
                    return "Client Error: Must provide filter name and key"
                results = []
                for key in args[1:]:
                    if verb in ("c", "m"):
                        results.append("Yes" if key in keys else "No")
                    else:
                        results.append("No" if key in keys else "Yes")
                        keys.add(key)
                return " ".join(results)

        return "Client Error: Command not supported"


@pytest.fixture
def fake_server() -> Generator[FakeBloomd, None, None]:
    """Running fake bloomd server."""
    server = FakeBloomd()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def free_port() -> int:
    """Get a port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def socket_pair() -> Generator[Callable, None, None]:
    """
    Factory for (Connection, server socket) pairs over socket.socketpair().

    Replies written to the server socket before an operation sit in the
    kernel buffer until the connection reads them.
    """
    sockets: List[socket.socket] = []

    def make(timeout: Optional[float] = 1.0, **kwargs) -> Tuple[Connection, socket.socket]:
        client_sock, server_sock = socket.socketpair()
        sockets.extend([client_sock, server_sock])
        return Connection(client_sock, ("test", 8673), timeout=timeout, **kwargs), server_sock

    yield make

    for sock in sockets:
        try:
            sock.close()
        except OSError:
            pass


def _read_command(server_sock: socket.socket) -> str:
    data = b""
    while not data.endswith(b"\r\n"):
        chunk = server_sock.recv(4096)
        if not chunk:
            break
        data += chunk
    return data.decode().rstrip("\r\n")


@pytest.fixture
def read_command() -> Callable[[socket.socket], str]:
    """Reads one command line sent by a Connection."""
    return _read_command
