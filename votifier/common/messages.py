from dataclasses import dataclass
from typing import Optional, Tuple

Peer = Tuple[str, int]   # (host, port) of the remote end of a connection


@dataclass(frozen=True)
class Vote:
    service_name: Optional[str] = None
    user_name: Optional[str] = None
    address: Optional[str] = None
    time_stamp: Optional[str] = None

    def __str__(self) -> str:
        return (f"Vote(service={self.service_name}, user={self.user_name}, "
                f"addr={self.address}, time={self.time_stamp})")


# Events published on the EventBus. Each variant is a plain record; the ones tied to a
# connection carry its peer address, never the socket object itself.

@dataclass(frozen=True)
class ServerStartedEvent:
    address: Peer


@dataclass(frozen=True)
class ServerStoppedEvent:
    address: Peer


@dataclass(frozen=True)
class VoteReceivedEvent:
    vote: Vote
    peer: Peer


@dataclass(frozen=True)
class DecryptInputExceptionEvent:
    peer: Peer
    cause: Exception
    payload: Optional[bytes] = None   # raw ciphertext, only when Config.expose_payloads is set


@dataclass(frozen=True)
class MalformedInputExceptionEvent:
    peer: Peer
    cause: Exception
    payload: Optional[bytes] = None   # decrypted bytes, only when Config.expose_payloads is set


@dataclass(frozen=True)
class TimeoutExceptionEvent:
    peer: Peer
    cause: Optional[Exception] = None


@dataclass(frozen=True)
class HandlerExceptionEvent:
    # anything the handler did not expect; the connection is closed like any other failure
    peer: Peer
    cause: Exception
