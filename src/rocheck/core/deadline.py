# src/rocheck/core/deadline.py

from __future__ import annotations

import time
from typing import Callable, Optional

from rocheck.errors import ValidationTimeout


class Deadline:
    """
    Deadline cooperativo para un check.

    Las primitivas geométricas llaman a check() una vez por slice visitado;
    si el tiempo se agotó se lanza ValidationTimeout y el orquestador
    convierte eso en un finding Info de "check omitido".

    seconds=None significa sin límite.
    """

    def __init__(
        self,
        seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + float(seconds)

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, where: str = "") -> None:
        if self.expired():
            raise ValidationTimeout(
                f"Tiempo límite de {self.seconds} s agotado",
                source=where or "deadline",
            )
