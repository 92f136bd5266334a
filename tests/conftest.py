from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class MemoryKeyValueStore:
    """In-memory stand-in for the sqlite store."""

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> bool:
        self.data[key] = value
        return True

    async def remove(self, key: str) -> bool:
        self.data.pop(key, None)
        return True


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()
