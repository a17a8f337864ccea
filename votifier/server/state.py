from dataclasses import dataclass
from typing import Dict, List, Optional
import threading
from threading import Lock

from votifier.common.messages import Peer


@dataclass   # one entry per connection still being handled
class Connection:
    peer: Peer
    thread: threading.Thread


class ServerState:
    # This class tracks the connection handlers that are still running
    def __init__(self):
        self.lock = Lock()  # guards the connection table
        self.connections: Dict[threading.Thread, Connection] = {}   # handler thread -> Connection
        self.accepted = 0   # connections accepted since the server was created

    def add(self, c: Connection) -> None:
        ''' This function registers a handler thread before it is started '''
        with self.lock:
            self.connections[c.thread] = c
            self.accepted += 1

    def remove(self, thread: threading.Thread) -> None:
        ''' This function forgets a handler thread that has finished '''
        with self.lock:
            self.connections.pop(thread, None)

    def active(self) -> List[Connection]:
        with self.lock:
            return list(self.connections.values())

    def count(self) -> int:
        with self.lock:
            return len(self.connections)

    def drain(self, timeout: Optional[float] = None) -> None:
        '''
        This function waits for every in-flight handler to finish. Handlers are bounded by
        their own deadline, so `timeout` is only a safety net per thread.
        '''
        for c in self.active():
            c.thread.join(timeout)
