"""Debounced, cancelable code lookups."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Iterable, Optional

from fleetforms.errors import CollaboratorError

logger = logging.getLogger(__name__)

_SUFFIXES = re.compile(
    r"\b(Ltd|Limited|Pvt|Private|Company|Corp|Corporation|Inc|Incorporated|LLC|LLP)\b", re.IGNORECASE
)
_STOP_WORDS = re.compile(r"\b(The|And|Of|For|In|On|At|By|With)\b", re.IGNORECASE)


def abbreviate(name: Optional[str], max_length: int = 3) -> str:
    """'Blue Dart Express Ltd' -> 'BDE', 'Amazon' -> 'AMA'."""
    if not name or not name.strip():
        return "CUS"
    clean = _STOP_WORDS.sub("", _SUFFIXES.sub("", name)).strip()
    words = [w for w in clean.split() if w]
    if not words:
        return "CUS"
    if len(words) == 1:
        return words[0][:max_length].upper()
    return "".join(w[0] for w in words[:max_length]).upper()


def next_code(prefix: str, existing: Iterable[Optional[str]], width: int = 3) -> str:
    """Next sequential code for ``prefix`` given the codes already in use."""
    numbers = []
    for code in existing:
        if not code or not code.startswith(prefix) or len(code) != len(prefix) + width:
            continue
        suffix = code[len(prefix):]
        if suffix.isdigit():
            numbers.append(int(suffix))
    return f"{prefix}{(max(numbers) + 1 if numbers else 1):0{width}d}"


def fallback_code(seed_text: str) -> str:
    return f"{abbreviate(seed_text)}001"


class DebouncedLookup:
    """Runs ``lookup(seed)`` after a quiet period and hands the result to ``apply``.

    A newer request cancels the pending one. A response that arrives after a
    newer request was issued is dropped.
    """

    def __init__(
        self,
        lookup: Callable[[str], Awaitable[str]],
        apply: Callable[[str], None],
        quiet_period: float = 0.5,
        fallback: Callable[[str], str] = fallback_code,
    ):
        self.lookup = lookup
        self.apply = apply
        self.quiet_period = quiet_period
        self.fallback = fallback
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(self, seed_text: str) -> None:
        self._generation += 1
        self.cancel_pending()
        if not seed_text or not seed_text.strip():
            return
        self._task = asyncio.create_task(self._run(self._generation, seed_text))

    def cancel(self) -> None:
        self._generation += 1
        self.cancel_pending()

    def cancel_pending(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(self, generation: int, seed_text: str) -> None:
        await asyncio.sleep(self.quiet_period)
        try:
            code = await self.lookup(seed_text)
        except CollaboratorError as e:
            logger.warning(f"Code lookup failed for '{seed_text}', using local fallback: {e}")
            code = self.fallback(seed_text)

        if generation != self._generation:
            logger.debug(f"Discarding stale lookup result {code} for '{seed_text}'")
            return
        self.apply(code)
