from __future__ import annotations

import sys
from typing import TextIO


class ConfirmationGate:
    """Notifies an operator before a destructive statement runs. Never blocks."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    def confirm(self, message: str) -> None:
        stream = self.stream if self.stream is not None else sys.stderr
        print(f"{message}, this is a destructive operation.", file=stream, flush=True)


class CollectingGate(ConfirmationGate):
    def __init__(self) -> None:
        super().__init__()
        self.messages: list[str] = []

    def confirm(self, message: str) -> None:
        self.messages.append(message)
