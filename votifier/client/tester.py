import logging, socket, time

from votifier.common.config import Current
from votifier.common.errors import IOFailure, ServerStateError
from votifier.common.messages import Vote
from votifier.common.protocol import encode_vote, encode_query, encrypt_block, recv_line, send_all

logger = logging.getLogger(__name__)

WILDCARD_HOSTS = ("", "0.0.0.0", "::")


def connect_host(config) -> str:
    ''' The host to dial for a config: a wildcard bind address means this machine '''
    return "127.0.0.1" if config.host in WILDCARD_HOSTS else config.host


class Tester:
    ''' Sends votes to a votifier server the way a voting site would, for diagnostics '''

    def __init__(self, current: Current):
        self.current = current

    def test_vote(self, vote: Vote) -> None:
        ''' Encode a vote and deliver it to the configured server '''
        self._send(encode_vote(vote))

    def test_query(self, message: str) -> None:
        ''' Deliver an arbitrary message, e.g. a hand-written VOTE record '''
        self._send(encode_query(message))

    def _send(self, plaintext: bytes) -> None:
        # Hold the config lock for the whole exchange so a restart can't swap the key midway
        with self.current.lock:
            config = self.current.get()
            if config is None or config.key_pair is None:
                raise ServerStateError("no configuration with a key pair is loaded")
            ciphertext = encrypt_block(plaintext, config.key_pair.public_key)
            host = connect_host(config)
            deadline = time.monotonic() + config.timeout
            try:
                with socket.create_connection((host, config.port), timeout=config.timeout) as sock:
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1) # send the block immediately
                    greeting = recv_line(sock, deadline)   # protocol name and version, ignored
                    logger.debug("Server greeting: %r", greeting)
                    send_all(sock, ciphertext, deadline)
            except OSError as e:
                raise IOFailure(f"could not deliver test message to {host}:{config.port}: {e}") from e
        logger.info("Sent %d-byte test message to %s:%d", len(ciphertext), host, config.port)
