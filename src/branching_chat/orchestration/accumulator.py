"""
Per-turn text accumulator.

Each provider session owns one 'TurnAccumulator' for the assistant turn it
writes. Chunks are appended as they are relayed, so whatever has arrived can be
persisted at any moment: on completion, on error, or when the session is
cancelled or the caller disconnects.
"""

INTERRUPTED_CONTENT = "[interrupted]"
ERROR_PREFIX = "Error: "


class TurnAccumulator:
    def __init__(self, turn_id: str, model: str):
        self.turn_id = turn_id
        self.model = model
        self._chunks: list[str] = []

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def partial_content(self) -> str:
        """Content to persist when the session ends before completing."""
        return self.text if self._chunks else INTERRUPTED_CONTENT


def error_content(message: str) -> str:
    return f"{ERROR_PREFIX}{message}"
