"""VisibilityGate — process-wide "is the host context active" signal.

The host environment (a UI focus tracker, an idle detector, an operator
toggle) feeds the gate through :meth:`VisibilityGate.set_active`; the
scheduler only reads it and subscribes to transitions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

VisibilityListener = Callable[[bool], None]


class VisibilityGate:
    """Boolean activity signal with change subscriptions."""

    def __init__(self, active: bool = True) -> None:
        self._active = active
        self._listeners: list[VisibilityListener] = []

    def is_active(self) -> bool:
        return self._active

    def set_active(self, active: bool) -> bool:
        """Update the signal. Listeners run only on an actual transition.

        Returns True when the value changed.
        """
        if active == self._active:
            return False
        self._active = active
        logger.info("Context became %s", "active" if active else "inactive")
        for listener in list(self._listeners):
            try:
                listener(active)
            except Exception:
                logger.exception("Visibility listener %r failed", listener)
        return True

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        """Register *listener* for transitions. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
