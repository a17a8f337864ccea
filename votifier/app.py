"""
Operator-facing entry points.

Every operation returns a Result instead of raising, with `error` set to the
name of the exception class (e.g. "BindFailure") so a front end can pick its
own wording.
"""
import datetime
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from votifier.client.tester import Tester, connect_host
from votifier.common.config import Config, Current, load_config, DEFAULT_KEY_SIZE
from votifier.common.crypto import rsa_generate, save_keypair, key_to_string
from votifier.common.errors import VotifierError, InvalidConfig, ServerStateError, UnknownKeyKind
from votifier.common.events import EventBus
from votifier.common.log import LoggingListener, configure_logging, is_level
from votifier.common.messages import Vote
from votifier.server.main import VotifierServer

logger = logging.getLogger(__name__)

TESTER_SERVICE = "TesterService"


@dataclass
class Result:
    ok: bool
    error: Optional[str] = None   # exception class name, machine-inspectable
    value: Any = None
    exception: Optional[BaseException] = None


def _failed(e: Exception) -> Result:
    return Result(ok=False, error=type(e).__name__, exception=e)


def timestamp() -> str:
    return datetime.datetime.now().isoformat(timespec="seconds")


class Votifier:
    ''' Wires the event bus, config holder, server and tester together for one config file '''

    def __init__(self, config_path: str, log_level: Optional[str] = None, bus: Optional[EventBus] = None):
        self.config_path = config_path
        self.log_level = log_level
        self.bus = bus if bus is not None else EventBus()
        self.current = Current()
        self.server = VotifierServer(self.bus, self.current)
        self.tester = Tester(self.current)
        self.bus.subscribe(LoggingListener())

    @property
    def config(self) -> Optional[Config]:
        return self.current.get()

    def _reload(self) -> Config:
        config = load_config(self.config_path)
        if self.log_level is not None and not is_level(self.log_level):
            raise InvalidConfig(f"unknown log level {self.log_level!r}")
        configure_logging(self.log_level or config.log_level)
        return config

    def load_config(self) -> Result:
        logger.info("Loading config %s", self.config_path)
        try:
            config = self._reload()
        except VotifierError as e:
            logger.error("Could not load config: %s", e)
            return _failed(e)
        self.current.set(config)
        return Result(ok=True, value=config)

    def start(self) -> Result:
        try:
            self.server.start()
        except VotifierError as e:
            logger.error("Could not start server: %s", e)
            return _failed(e)
        return Result(ok=True, value=self.server.address)

    def stop(self) -> Result:
        try:
            self.server.stop()
        except VotifierError as e:
            logger.error("Could not stop server: %s", e)
            return _failed(e)
        return Result(ok=True)

    def restart(self) -> Result:
        try:
            self.server.restart(self._reload)
        except VotifierError as e:
            logger.error("Restart failed: %s", e)
            return _failed(e)
        return Result(ok=True, value=self.server.address)

    def generate_and_save_keypair(self, bits: int = DEFAULT_KEY_SIZE) -> Result:
        '''
        Generate a new pair, write it to the configured key files and install it.
        The running server keeps its old key until it is restarted.
        Output: Result whose value is the new public key as Base64 text
        '''
        with self.current.lock:
            config = self.current.get()
            if config is None:
                return _failed(ServerStateError("no configuration loaded"))
            try:
                pair = rsa_generate(bits)
                save_keypair(pair, config.public_key_file, config.private_key_file)
            except VotifierError as e:
                logger.error("Key pair generation failed: %s", e)
                return _failed(e)
            self.current.set(config.with_key_pair(pair))
        logger.info("Generated a %d-bit key pair", bits)
        return Result(ok=True, value=key_to_string(pair.public_key))

    def display_key(self, which: str) -> Result:
        config = self.current.get()
        if config is None or config.key_pair is None:
            return _failed(ServerStateError("no key pair loaded"))
        if which in ("pub", "public"):
            return Result(ok=True, value=key_to_string(config.key_pair.public_key))
        if which in ("priv", "private"):
            return Result(ok=True, value=key_to_string(config.key_pair.private_key))
        return _failed(UnknownKeyKind(which))

    def send_test_vote(self, user_name: str) -> Result:
        config = self.current.get()
        host = connect_host(config) if config is not None else ""
        vote = Vote(service_name=TESTER_SERVICE, user_name=user_name, address=host, time_stamp=timestamp())
        try:
            self.tester.test_vote(vote)
        except VotifierError as e:
            logger.error("Test vote failed: %s", e)
            return _failed(e)
        return Result(ok=True, value=vote)

    def send_test_query(self, raw_lines: List[str]) -> Result:
        message = "\n".join(raw_lines)
        try:
            self.tester.test_query(message)
        except VotifierError as e:
            logger.error("Test query failed: %s", e)
            return _failed(e)
        return Result(ok=True, value=message)
