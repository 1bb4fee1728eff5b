"""
Processed message-id set for receive-side replay protection.

Similar in spirit to a nonce table, but ordering across senders is arbitrary,
so every consumed id is remembered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Tuple

from .canonical import is_hex32


@dataclass
class ProcessedMessages:
    """Mutable mapping: message_id -> source_chain_id."""

    _seen: Dict[str, int] = field(default_factory=dict)

    def contains(self, message_id: str) -> bool:
        return message_id in self._seen

    def mark(self, message_id: str, source_chain_id: int) -> None:
        if not is_hex32(message_id):
            raise ValueError(f"invalid message_id: {message_id!r}")
        if message_id in self._seen:
            raise ValueError(f"message already processed: {message_id}")
        self._seen[message_id] = int(source_chain_id)

    def items(self) -> Iterator[Tuple[str, int]]:
        for message_id in sorted(self._seen):
            yield message_id, self._seen[message_id]

    def __len__(self) -> int:
        return len(self._seen)
