from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class RequestDeduplicator:
    """
    Identical reads issued while one is already in flight share its result.
    An entry older than its TTL is not reused even if it has not finished yet.
    """

    def __init__(self, default_ttl: float = 30.0):
        self.default_ttl = default_ttl
        self._pending: dict[str, tuple[asyncio.Task, float]] = {}

    @staticmethod
    def key(method: str, params: dict[str, Any]) -> str:
        parts = [f"{k}:{json.dumps(params[k], sort_keys=True, default=str)}" for k in sorted(params)]
        return f"{method}:" + "|".join(parts)

    async def run(
        self,
        method: str,
        params: dict[str, Any],
        factory: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        key = self.key(method, params)
        now = time.monotonic()
        window = self.default_ttl if ttl is None else ttl

        pending = self._pending.get(key)
        if pending is not None and not pending[0].done() and (now - pending[1]) < window:
            return await asyncio.shield(pending[0])

        task = asyncio.ensure_future(factory())
        self._pending[key] = (task, now)

        def _forget(t: asyncio.Task) -> None:
            current = self._pending.get(key)
            if current is not None and current[0] is t:
                self._pending.pop(key, None)

        task.add_done_callback(_forget)
        return await asyncio.shield(task)

    def clear(self) -> None:
        self._pending.clear()

    def stats(self) -> dict[str, int]:
        return {"pending_requests": len(self._pending)}
