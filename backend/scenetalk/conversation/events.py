"""
State and history notifications for the presentation layer.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger("scenetalk.events")


class EventType(str, Enum):
	STATE_CHANGED = "state_changed"
	TURN_APPENDED = "turn_appended"
	PROGRESS_CHANGED = "progress_changed"
	NOTICE = "notice"
	ERROR_OCCURRED = "error_occurred"
	SESSION_RESET = "session_reset"


@dataclass
class ConversationEvent:
	event_type: EventType
	session_id: str
	data: Dict[str, Any] = field(default_factory=dict)
	timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[ConversationEvent], None]


class ConversationEventBus:
	def __init__(self):
		self._handlers: Dict[EventType, List[EventHandler]] = {}
		self._global_handlers: List[EventHandler] = []

	def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
		self._handlers.setdefault(event_type, []).append(handler)

	def subscribe_all(self, handler: EventHandler) -> None:
		self._global_handlers.append(handler)

	def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
		try:
			self._handlers.get(event_type, []).remove(handler)
		except ValueError:
			logger.warning("Handler not found for %s", event_type)

	def emit(self, event: ConversationEvent) -> None:
		"""
		Deliver an event to its subscribers.

		A failing handler is logged and does not stop delivery to the others.
		"""
		logger.debug("Emitting %s for session %s", event.event_type.value, event.session_id)
		for handler in list(self._handlers.get(event.event_type, [])) + list(self._global_handlers):
			try:
				handler(event)
			except Exception as e:
				logger.error("Error in event handler for %s: %s", event.event_type.value, e)

	def clear_handlers(self) -> None:
		self._handlers.clear()
		self._global_handlers.clear()
