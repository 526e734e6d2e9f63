import re
import secrets
import time
from typing import Callable

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
RANDOM_LENGTH = 8


def to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(ALPHABET[rem])
    return "".join(reversed(out))


def code_pattern(prefix: str) -> "re.Pattern[str]":
    return re.compile(
        rf"^{re.escape(prefix)}-[0-9A-Z]+-[0-9A-Z]{{{RANDOM_LENGTH}}}$"
    )


class CodeGenerator:
    """Ticket codes of the form PREFIX-TIME-RANDOM, e.g. AMP-MH1Z4K2Q-7XK2P0QD.

    TIME is base-36 epoch milliseconds and never goes backwards within the
    process. RANDOM carries ~41 bits from `secrets`, enough that collisions
    are negligible even before the ledger's unique constraint.
    """

    def __init__(
        self,
        prefix: str = "AMP",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.prefix = prefix
        self._clock = clock
        self._last_ms = 0

    def _time_segment(self) -> str:
        ms = int(self._clock() * 1000)
        if ms < self._last_ms:
            ms = self._last_ms
        self._last_ms = ms
        return to_base36(ms)

    def generate(self) -> str:
        rand = "".join(secrets.choice(ALPHABET) for _ in range(RANDOM_LENGTH))
        return f"{self.prefix}-{self._time_segment()}-{rand}"
