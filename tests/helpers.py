"""Test doubles shared across test modules."""

from __future__ import annotations

from typing import List
from unittest.mock import MagicMock

from packages.domain.classification.identity import product_identity_hash
from packages.domain.classification.schemas import ClassifiableProduct


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Async sleep replacement: records delays and advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


def make_product(name: str, category: str = "Uncategorized") -> ClassifiableProduct:
    return ClassifiableProduct(identity_hash=product_identity_hash(name), name=name, category=category)


def make_anthropic_response(text: str) -> MagicMock:
    """Shape of an anthropic Message as read by the classifier."""
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage = MagicMock(input_tokens=120, output_tokens=40)
    return response
