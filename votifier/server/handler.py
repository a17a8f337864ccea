import enum
import logging
import socket
import time
from typing import List

from votifier.common.crypto import block_size
from votifier.common.errors import DecryptionFailure, MalformedVoteFormat, TimeoutFailure
from votifier.common.events import EventBus
from votifier.common.messages import (
    Peer, VoteReceivedEvent, DecryptInputExceptionEvent, MalformedInputExceptionEvent, TimeoutExceptionEvent,
    HandlerExceptionEvent,
)
from votifier.common.protocol import GREETING, decrypt_block, parse_vote, recv_exact, send_all

logger = logging.getLogger(__name__)


class HandlerState(enum.Enum):
    ACCEPTED = "accepted"
    GREETING_SENT = "greeting_sent"
    CIPHERTEXT_READ = "ciphertext_read"
    DECRYPTED = "decrypted"
    PARSED = "parsed"
    DISPATCHED = "dispatched"
    CLOSED = "closed"
    FAILED = "failed"


class ConnectionHandler:
    '''
    Runs the one-shot vote protocol on an accepted socket:
    greeting -> one ciphertext block -> decrypt -> parse -> publish -> close.
    Every outcome, good or bad, ends up as exactly one event on the bus.
    '''

    def __init__(self, conn: socket.socket, peer: Peer, private_key, bus: EventBus,
                 timeout: float, expose_payloads: bool = False):
        self.conn = conn
        self.peer = (peer[0], peer[1])
        self.private_key = private_key
        self.bus = bus
        self.timeout = timeout
        self.expose_payloads = expose_payloads
        self.state = HandlerState.ACCEPTED
        self.history: List[HandlerState] = [HandlerState.ACCEPTED]

    def _enter(self, state: HandlerState) -> None:
        self.state = state
        self.history.append(state)

    def run(self) -> None:
        deadline = time.monotonic() + self.timeout   # one deadline for the whole connection
        ciphertext = plaintext = None
        try:
            send_all(self.conn, GREETING, deadline)
            self._enter(HandlerState.GREETING_SENT)

            ciphertext = recv_exact(self.conn, block_size(self.private_key), deadline)
            self._enter(HandlerState.CIPHERTEXT_READ)

            plaintext = decrypt_block(ciphertext, self.private_key)
            self._enter(HandlerState.DECRYPTED)

            vote = parse_vote(plaintext)
            self._enter(HandlerState.PARSED)

            self.bus.publish(VoteReceivedEvent(vote=vote, peer=self.peer))
            self._enter(HandlerState.DISPATCHED)
        except TimeoutFailure as e:
            self._fail(TimeoutExceptionEvent(peer=self.peer, cause=e))
        except DecryptionFailure as e:
            self._fail(DecryptInputExceptionEvent(peer=self.peer, cause=e, payload=self._payload(ciphertext)))
        except MalformedVoteFormat as e:
            self._fail(MalformedInputExceptionEvent(peer=self.peer, cause=e, payload=self._payload(plaintext)))
        except OSError as e:
            # reset by peer or broken pipe: the block never arrived whole
            logger.info("Connection from %s:%d dropped: %s", self.peer[0], self.peer[1], e)
            self._fail(TimeoutExceptionEvent(peer=self.peer, cause=e))
        except Exception as e:
            logger.exception("Unexpected error handling %s:%d", self.peer[0], self.peer[1])
            self._fail(HandlerExceptionEvent(peer=self.peer, cause=e))
        finally:
            try:
                self.conn.close()
            except OSError:
                logger.debug("close failed for %s:%d", self.peer[0], self.peer[1], exc_info=True)
            if self.state is not HandlerState.FAILED:
                self._enter(HandlerState.CLOSED)

    def _payload(self, data):
        return data if self.expose_payloads else None

    def _fail(self, event) -> None:
        self._enter(HandlerState.FAILED)
        self.bus.publish(event)
