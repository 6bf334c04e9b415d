"""Admin capability gates. Implement IAuthGate protocol."""
from typing import Callable


class StaticAuthGate:
    """Fixed answer, decided when the engine is built."""

    def __init__(self, authorized: bool):
        self._authorized = bool(authorized)

    def is_authorized(self) -> bool:
        return self._authorized


class CallbackAuthGate:
    """Asks a callable every time, e.g. the current session's admin flag."""

    def __init__(self, check: Callable[[], bool]):
        self._check = check

    def is_authorized(self) -> bool:
        return bool(self._check())
