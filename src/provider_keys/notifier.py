import itertools
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from .models import ApiKeys, Service

logger = logging.getLogger(__name__)

KeySnapshot = Mapping[Service, str]
Listener = Callable[[KeySnapshot], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by Notifier.subscribe()."""

    id: int
    listener: Listener = field(compare=False)
    notifier: "Notifier" = field(compare=False, repr=False)

    def unsubscribe(self) -> None:
        self.notifier.unsubscribe(self)


class Notifier:
    """Synchronous in-process publish/subscribe of key set snapshots."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscriptions: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, listener: Listener) -> Subscription:
        with self._lock:
            subscription = Subscription(next(self._ids), listener, self)
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions = [s for s in self._subscriptions if s.id != subscription.id]

    def broadcast(self, keys: ApiKeys) -> KeySnapshot:
        """Deliver one read-only snapshot to every current listener.

        Listeners subscribed or unsubscribed while the broadcast runs do not
        change who receives this one. A listener that raises is logged and
        skipped.
        """
        snapshot = MappingProxyType(dict(keys))
        with self._lock:
            subscriptions = list(self._subscriptions)

        for subscription in subscriptions:
            try:
                subscription.listener(snapshot)
            except Exception:
                logger.exception(f"Key change listener {subscription.id} failed")
        return snapshot
