"""
Slot-indexed Buffer storage used while a plan executes.
"""

from __future__ import annotations

from typing import Dict

from tiny_opgraph.buffer import Buffer


class SlotStorage:
    def __init__(self) -> None:
        self._store: Dict[int, Buffer] = {}

    def put(self, slot: int, buffer: Buffer) -> None:
        self._store[slot] = buffer

    def get(self, slot: int) -> Buffer:
        return self._store[slot]

    def delete(self, slot: int) -> None:
        self._store.pop(slot, None)

    def has(self, slot: int) -> bool:
        return slot in self._store

    def clear(self) -> None:
        self._store.clear()

    def nbytes(self) -> int:
        return sum(buf.nbytes for buf in self._store.values())

    def __len__(self) -> int:
        return len(self._store)
