"""
Message Bus

Central hub for routing commands and events to their handlers.

Commands are the operations the booking core exposes upward (create a
booking, handle a webhook, redeem points...). Events reach two kinds of
handlers. Transactional handlers run inside the unit of work just before it
commits and write into it (the notification outbox); a failure rolls the
whole unit of work back. Event handlers run after the commit and must never
affect the committed state.
"""

from typing import Any, Callable, Dict, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


def _handler_name(handler: Callable) -> str:
    return getattr(handler, '__qualname__', None) or getattr(handler, '__name__', repr(handler))


class MessageBus:
    """
    Message bus for commands and events

    Commands: One handler per command (1:1)
    Events: Multiple handlers per event (1:N), in the transaction or after it
    """

    def __init__(self):
        self._event_handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._transactional_handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._command_handlers: Dict[Type, Callable] = {}

    def register_event_handler(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], None]
    ):
        """Register an event handler; several handlers may share an event type."""
        self._event_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered event handler {_handler_name(handler)} for {event_type.__name__}")

    def register_transactional_handler(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent, Any], None]
    ):
        """Register a handler called with (event, uow) before the unit of work commits"""
        self._transactional_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered transactional handler {_handler_name(handler)} for {event_type.__name__}")

    def register_command_handler(
        self,
        command_type: Type,
        handler: Callable[[Any], Any]
    ):
        """
        Register a command handler

        Only one handler can be registered per command type.
        """
        if command_type in self._command_handlers:
            raise ValueError(
                f"Handler for {command_type.__name__} is already registered. "
                "Commands can have only one handler."
            )
        self._command_handlers[command_type] = handler
        logger.debug(f"Registered command handler for {command_type.__name__}")

    def has_command_handler(self, command_type: Type) -> bool:
        return command_type in self._command_handlers

    def handle_command(self, command: Any) -> Any:
        """
        Handle a command

        Returns the result from the command handler. Domain errors raised by
        the handler propagate unchanged to the caller.
        """
        command_type = type(command)
        handler = self._command_handlers.get(command_type)

        if not handler:
            raise ValueError(
                f"No handler registered for command {command_type.__name__}"
            )

        logger.info(f"Handling command: {command_type.__name__}")
        try:
            result = handler(command)
        except Exception as e:
            logger.warning(f"Command {command_type.__name__} failed: {e.__class__.__name__}: {e}")
            raise
        logger.debug(f"Command {command_type.__name__} handled successfully")
        return result

    def handle_in_transaction(self, events: List[DomainEvent], uow):
        """
        Run transactional handlers for events about to be committed

        Errors propagate so the unit of work rolls back with them.
        """
        for event in events:
            for handler in self._transactional_handlers.get(type(event), []):
                handler(event, uow)

    def publish_events(self, events: List[DomainEvent]) -> int:
        """
        Publish domain events

        All registered handlers for each event type are called. Errors in
        handlers are logged but don't stop other handlers. Returns the number
        of handler failures.
        """
        failures = 0
        for event in events:
            event_type = type(event)
            handlers = self._event_handlers.get(event_type, [])

            if not handlers:
                logger.debug(f"No handlers registered for event {event_type.__name__}")
                continue

            logger.info(f"Publishing event: {event_type.__name__} (ID: {event.event_id})")

            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    failures += 1
                    logger.error(
                        f"Error in event handler {_handler_name(handler)} "
                        f"for event {event_type.__name__}: {e}",
                        exc_info=True
                    )
        return failures


# Global message bus instance
message_bus = MessageBus()
