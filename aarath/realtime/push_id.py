"""Sortable keys for appended children.

A push id is 8 characters of millisecond timestamp followed by 12 random
characters, all drawn from an alphabet in ASCII order, so ids compare in
creation order. Ids generated within the same millisecond reuse the previous
random suffix incremented by one.
"""
import random
import threading
import time

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


class PushIdGenerator:
    def __init__(self, clock=None, rng: random.Random | None = None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._rng = rng or random.SystemRandom()
        self._last_ts = -1
        self._last_rand: list[int] = [0] * 12
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            now = self._clock()
            if now <= self._last_ts:
                # Clock stood still or went back: keep the old prefix and bump the suffix
                now = self._last_ts
                self._increment_suffix()
            else:
                self._last_rand = [self._rng.randrange(64) for _ in range(12)]
            self._last_ts = now
            return self._encode_time(now) + "".join(PUSH_CHARS[i] for i in self._last_rand)

    def _increment_suffix(self) -> None:
        i = 11
        while i >= 0 and self._last_rand[i] == 63:
            self._last_rand[i] = 0
            i -= 1
        if i < 0:
            raise OverflowError("push id suffix exhausted for this millisecond")
        self._last_rand[i] += 1

    @staticmethod
    def _encode_time(ts: int) -> str:
        chars = []
        for _ in range(8):
            chars.append(PUSH_CHARS[ts % 64])
            ts //= 64
        return "".join(reversed(chars))


