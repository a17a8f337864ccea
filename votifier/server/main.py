import argparse, logging, socket, threading
from dataclasses import replace
from typing import Callable, Optional

from votifier.common.config import Config, Current
from votifier.common.errors import BindFailure, ServerStateError
from votifier.common.events import EventBus
from votifier.common.messages import ServerStartedEvent, ServerStoppedEvent
from votifier.server.handler import ConnectionHandler
from votifier.server.state import ServerState, Connection

logger = logging.getLogger(__name__)

BACKLOG = 50
ACCEPT_POLL = 0.25   # seconds between checks of the stop flag while waiting in accept()


class VotifierServer:
    '''
    Owns the listening socket and the acceptor thread. Each accepted connection gets its
    own handler thread; stop() waits for those to finish before reporting the server stopped.
    '''

    def __init__(self, bus: EventBus, current: Current):
        self.bus = bus
        self.current = current
        self.state = ServerState()
        self._lock = threading.RLock()   # serializes start/stop
        self._srv: Optional[socket.socket] = None
        self._acceptor: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    @property
    def running(self) -> bool:
        return self._srv is not None

    @property
    def address(self):
        ''' The address actually bound, so a configured port 0 resolves to the real port '''
        srv = self._srv
        return srv.getsockname()[:2] if srv is not None else None

    def start(self, config: Optional[Config] = None) -> None:
        '''
        This function binds the listening socket and starts accepting connections.
        Input:
            - config: new configuration to install before starting; the current one when omitted
        Raises BindFailure when the address is unavailable, ServerStateError when already running
        or when no key pair is loaded.
        '''
        with self._lock:
            if self._srv is not None:
                raise ServerStateError("server is already running")
            if config is not None:
                self.current.set(config)
            config = self.current.get()
            if config is None or config.key_pair is None:
                raise ServerStateError("no configuration with a key pair is loaded")
            try:
                srv = socket.create_server(config.address, backlog=BACKLOG)
            except OSError as e:
                raise BindFailure(config.address, e) from e
            srv.settimeout(ACCEPT_POLL)
            if config.port == 0:
                # publish the port the OS picked so testers connect to the right place
                config = replace(config, port=srv.getsockname()[1])
                self.current.set(config)
            self._srv = srv
            self._stopping = threading.Event()
            self._acceptor = threading.Thread(target=self._accept_loop, args=(srv, config, self._stopping),
                                              name="votifier-acceptor", daemon=True)
            address = self.address
        logger.info("Server listening on %s:%d", address[0], address[1])
        self.bus.publish(ServerStartedEvent(address=address))
        self._acceptor.start()

    def stop(self) -> None:
        '''
        This function stops accepting, closes the listening socket, waits for in-flight
        connections to finish and then publishes ServerStoppedEvent.
        '''
        with self._lock:
            srv = self._srv
            if srv is None:
                raise ServerStateError("server is not running")
            address = srv.getsockname()[:2]
            self._stopping.set()
            self._srv = None
            srv.close()
            acceptor, self._acceptor = self._acceptor, None
        acceptor.join()
        in_flight = self.state.count()
        if in_flight:
            logger.info("Waiting for %d connection(s) to finish", in_flight)
        self.state.drain()
        logger.info("Server stopped")
        self.bus.publish(ServerStoppedEvent(address=address))

    def restart(self, loader: Callable[[], Config]) -> None:
        '''
        This function stops the server and starts it again with a freshly loaded Config.
        The new start runs from a one-shot ServerStoppedEvent listener, so the old socket is
        closed before the new one is bound. Errors from loading or starting are raised here.
        The config lock is only held for the reload and rebind, never while draining, so
        in-flight connections whose listeners read the config can still finish.
        '''
        errors = []

        def on_stopped(event):
            try:
                with self.current.lock:
                    self.start(loader())
            except Exception as e:
                errors.append(e)

        listener = self.bus.once(ServerStoppedEvent, on_stopped)
        try:
            self.stop()
        except ServerStateError:
            self.bus.unsubscribe(listener)
            raise
        if errors:
            raise errors[0]

    def _accept_loop(self, srv: socket.socket, config: Config, stopping: threading.Event) -> None:
        private_key = config.key_pair.private_key
        while not stopping.is_set():
            try:
                conn, addr = srv.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if stopping.is_set() or srv.fileno() == -1:
                    break
                logger.error("accept() failed: %s", e)
                continue
            try:
                conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                logger.debug("TCP_NODELAY not set for %s", addr, exc_info=True)
            handler = ConnectionHandler(conn, addr, private_key, self.bus, config.timeout, config.expose_payloads)
            t = threading.Thread(target=self._run_handler, args=(handler,),
                                 name=f"votifier-conn-{addr[0]}:{addr[1]}", daemon=True)
            self.state.add(Connection(peer=handler.peer, thread=t))
            t.start()

    def _run_handler(self, handler: ConnectionHandler) -> None:
        try:
            handler.run()
        finally:
            self.state.remove(threading.current_thread())


def main():
    # Parse command line arguments (config file path)
    ap = argparse.ArgumentParser(description="Receive RSA-encrypted vote notifications over TCP.")
    ap.add_argument("--config", default="config.json", help="JSON configuration file")
    ap.add_argument("--log-level", default=None, help="override the configured log level")
    args = ap.parse_args()

    from votifier.app import Votifier
    from votifier.server.console import run_console

    votifier = Votifier(args.config, log_level=args.log_level)
    if not (votifier.load_config().ok and votifier.start().ok):
        raise SystemExit(1)
    run_console(votifier)


if __name__ == "__main__":
    main()
