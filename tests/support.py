import threading

from votifier.common.crypto import rsa_generate

_pairs = {}


def key_pair(bits=1024):
    ''' One generated pair per size for the whole test run '''
    if bits not in _pairs:
        _pairs[bits] = rsa_generate(bits)
    return _pairs[bits]


class Recorder:
    ''' EventBus listener that keeps every event and lets a test wait for some to arrive '''

    def __init__(self):
        self.events = []
        self.cond = threading.Condition()

    def __call__(self, event):
        with self.cond:
            self.events.append(event)
            self.cond.notify_all()

    def of(self, kind):
        with self.cond:
            return [e for e in self.events if isinstance(e, kind)]

    def wait_for(self, kind, count=1, timeout=5.0):
        with self.cond:
            self.cond.wait_for(lambda: len([e for e in self.events if isinstance(e, kind)]) >= count, timeout)
        return self.of(kind)
