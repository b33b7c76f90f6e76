from __future__ import annotations

import hashlib
import math


def deterministic_embedding(text: str, *, dimensions: int) -> list[float]:
    if dimensions <= 0:
        raise ValueError("dimensions must be > 0")

    seed = hashlib.sha256(text.encode("utf-8")).digest()
    values: list[int] = []
    digest = seed

    while len(values) < dimensions:
        digest = hashlib.sha256(digest + seed).digest()
        values.extend(digest)

    vector = [((value / 127.5) - 1.0) for value in values[:dimensions]]
    norm = math.sqrt(sum(value * value for value in vector))
    if norm > 0:
        return [value / norm for value in vector]

    return vector


class HashEmbeddingClient:
    """Offline embedding provider; equal texts map to equal unit vectors."""

    def __init__(self, *, dimensions: int = 64) -> None:
        self._dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        return deterministic_embedding(text, dimensions=self._dimensions)
