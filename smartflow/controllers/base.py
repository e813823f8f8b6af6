from abc import ABC, abstractmethod
from typing import Any

from smartflow.domain.models import ControlStrategy

class Controller(ABC):
    strategy: ControlStrategy

    @abstractmethod
    def run_tick(self, kernel: Any):
        """Adjusts the kernel's signal timing before the signal stage advances."""
        pass

    def reset(self):
        pass
