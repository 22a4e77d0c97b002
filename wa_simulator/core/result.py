"""Control call result"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from wa_simulator.core.events import BaseEvent, ErrorInfo


@dataclass(frozen=True)
class Result:
    """Outcome of a control call.

    success: whether the call did what was asked
    error: set when ``success`` is False
    event: the event the call emitted, if any
    """

    success: bool
    error: Optional[ErrorInfo] = None
    event: Optional[BaseEvent] = None

    @classmethod
    def ok(cls, event: Optional[BaseEvent] = None) -> Result:
        return cls(success=True, event=event)

    @classmethod
    def fail(cls, error: BaseException) -> Result:
        return cls(success=False, error=ErrorInfo.from_exception(error))

    def __bool__(self) -> bool:
        return self.success
