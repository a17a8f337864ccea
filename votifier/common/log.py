import logging

from votifier.common.messages import (
    ServerStartedEvent, ServerStoppedEvent, VoteReceivedEvent,
    DecryptInputExceptionEvent, MalformedInputExceptionEvent, TimeoutExceptionEvent, HandlerExceptionEvent,
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("votifier.events")

_handler = None   # console handler installed by configure_logging


def is_level(name) -> bool:
    ''' True when `name` is a level the logging module knows, e.g. "info" or "WARNING" '''
    return isinstance(name, str) and isinstance(logging.getLevelName(name.upper()), int)


def configure_logging(level="INFO") -> None:
    ''' Install a console handler on the votifier logger tree '''
    global _handler
    root = logging.getLogger("votifier")
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(_handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)


def _peer(p) -> str:
    return f"{p[0]}:{p[1]}"


class LoggingListener:
    ''' EventBus listener that writes one log line per event '''

    def __call__(self, event) -> None:
        if isinstance(event, ServerStartedEvent):
            logger.info("Votifier started on %s", _peer(event.address))
        elif isinstance(event, ServerStoppedEvent):
            logger.info("Votifier stopped")
        elif isinstance(event, VoteReceivedEvent):
            logger.info("%s from %s", event.vote, _peer(event.peer))
        elif isinstance(event, DecryptInputExceptionEvent):
            logger.warning("Could not decrypt input from %s: %s%s", _peer(event.peer), event.cause, _dump(event.payload))
        elif isinstance(event, MalformedInputExceptionEvent):
            logger.warning("Malformed vote from %s: %s%s", _peer(event.peer), event.cause, _dump(event.payload))
        elif isinstance(event, TimeoutExceptionEvent):
            logger.warning("Connection from %s timed out: %s", _peer(event.peer), event.cause)
        elif isinstance(event, HandlerExceptionEvent):
            logger.error("Connection from %s failed: %r", _peer(event.peer), event.cause)
        else:
            logger.debug("Unhandled event %r", event)


def _dump(payload) -> str:
    return "" if payload is None else f" (payload {payload!r})"
