import logging
from threading import Lock
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[[object], None]


class EventBus:
    '''
    Publish/subscribe hub for server events.
    Listeners are called synchronously, in subscription order, on the publishing thread.
    '''

    def __init__(self):
        self.lock = Lock()   # guards the listener list only, listeners run outside it
        self._listeners: List[Tuple[Listener, Optional[type]]] = []

    def subscribe(self, listener: Listener, event_type: Optional[type] = None) -> Listener:
        '''
        This function registers a listener.
        Input:
            - listener: callable taking one event
            - event_type: when given, the listener only receives events of this class (or a tuple of classes)
        Output: the listener, so it can be passed to unsubscribe later
        '''
        with self.lock:
            self._listeners.append((listener, event_type))
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        ''' This function removes a listener; removing an unknown listener does nothing '''
        with self.lock:
            for i, (cb, _) in enumerate(self._listeners):
                if cb is listener:
                    del self._listeners[i]
                    return

    def once(self, event_type: type, listener: Listener) -> Listener:
        '''
        This function registers a listener that fires for the first matching event only.
        The wrapper removes itself before calling the listener, so two threads publishing
        at the same time cannot both run it.
        '''
        fired = Lock()

        def wrapper(event):
            if not fired.acquire(blocking=False):
                return
            self.unsubscribe(wrapper)
            listener(event)

        return self.subscribe(wrapper, event_type)

    def listeners(self) -> List[Listener]:
        with self.lock:
            return [cb for cb, _ in self._listeners]

    def publish(self, event) -> None:
        '''
        This function delivers an event to every listener subscribed at the time of the call.
        A failing listener is logged and skipped; the error never reaches the publisher.
        '''
        with self.lock:
            snapshot = list(self._listeners)
        for cb, event_type in snapshot:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                cb(event)
            except Exception:
                logger.exception("Listener %r failed on %s", cb, type(event).__name__)
