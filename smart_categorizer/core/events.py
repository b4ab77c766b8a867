"""
Mutation Events

Every committed write to a stored record publishes a MutationEvent.
Subscribers (cache invalidation, metrics, ...) run after the write; a
failing subscriber is logged and never affects the write or the caller.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

RULE = 'rule'
COMPOSITE = 'composite'
MERCHANT = 'merchant'
CORRECTION = 'correction'


@dataclass(frozen=True)
class MutationEvent:
    """A committed change to one stored record"""
    entity: str          # rule, composite, merchant, correction
    action: str          # created, updated, deleted, usage
    entity_id: Any = None
    category: Any = None
    pattern_type: Optional[str] = None
    pattern_value: Optional[str] = None

    @property
    def cache_keys(self) -> List[str]:
        """Cache keys affected by this change"""
        keys = []
        if self.entity == RULE:
            keys.append(f"rule:{self.entity_id}")
            keys.append('rules:active')
            if self.category is not None:
                keys.append(f"rules:category:{self.category}")
            if self.pattern_type:
                value = (self.pattern_value or '').strip().lower()
                keys.append(f"rules:pattern:{self.pattern_type}:{value}")
        elif self.entity == COMPOSITE:
            keys.append(f"composite:{self.entity_id}")
            keys.append('composites:active')
        elif self.entity == MERCHANT:
            keys.append(f"merchant:{self.entity_id}")
        return keys


Handler = Callable[[MutationEvent], None]


class EventDispatcher:
    """Publishes mutation events to subscribed handlers"""

    def __init__(self):
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Handler:
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: MutationEvent):
        """Deliver an event to every handler; handler errors are logged, not raised"""
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.error(
                    "Event handler %r failed for %s %s %s",
                    handler, event.entity, event.action, event.entity_id,
                    exc_info=True,
                )
