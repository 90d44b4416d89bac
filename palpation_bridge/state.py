"""Shared palpation state definitions."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class CompletionPolicy(str, enum.Enum):
    """
    When a palpation session is flushed to the backend:

    RESET     - regions are created one per force reading (R1, R2, ...);
                flushed only when the device sends {"ack": "reset"}
    CIRCULAR  - a fixed set of regions is filled in wrap-around order;
                flushed automatically once every region has a force value
    """
    RESET = "reset"
    CIRCULAR = "circular"


@dataclass
class RegionMeasurement:
    """Force and pain recorded for one examination region."""

    pain: Optional[int] = None
    force: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"pain": self.pain, "force": self.force}


__all__ = ["CompletionPolicy", "RegionMeasurement"]
