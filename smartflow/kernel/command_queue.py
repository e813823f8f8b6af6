import logging
from collections import deque
from typing import Any, Deque

from smartflow.kernel.commands import Command

logger = logging.getLogger(__name__)

class CommandQueue:
    """FIFO of pending mutations, drained at the start of each tick."""

    def __init__(self):
        self.pending: Deque[Command] = deque()

    def add(self, command: Command):
        self.pending.append(command)

    def drain(self, kernel: Any) -> int:
        """Executes every queued command in arrival order. Returns how many ran."""
        batch, self.pending = self.pending, deque()
        for command in batch:
            logger.debug("Applying %s", type(command).__name__)
            command.execute(kernel)
        return len(batch)

    def clear(self):
        self.pending.clear()

    def __len__(self) -> int:
        return len(self.pending)
