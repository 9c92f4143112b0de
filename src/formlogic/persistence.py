"""
Storage interface for FormState snapshots.

The controller only needs load() and save(); transport, retry and
backoff belong to whatever implements FormStore. Two simple stores are
provided: in-memory and a single JSON/YAML file.
"""
from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import List, Optional

from formlogic.model import FormState
from formlogic.serialization import state_from_json, state_from_yaml, state_to_json, state_to_yaml


class FormStore(ABC):
    """Load/save boundary used by the controller."""

    @abstractmethod
    def load(self) -> Optional[FormState]:
        ...

    @abstractmethod
    def save(self, state: FormState) -> None:
        ...

    def clear(self) -> None:
        pass


class InMemoryFormStore(FormStore):
    """Keeps every saved snapshot; the last one is what load() returns."""

    def __init__(self, initial: Optional[FormState] = None) -> None:
        self.history: List[FormState] = [initial] if initial is not None else []

    def load(self) -> Optional[FormState]:
        return self.history[-1] if self.history else None

    def save(self, state: FormState) -> None:
        self.history.append(state)

    def clear(self) -> None:
        self.history = []


class FileFormStore(FormStore):
    """
    One snapshot per file.

    Files ending in .yaml/.yml are written as YAML, anything else as JSON.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    @property
    def is_yaml(self) -> bool:
        return os.path.splitext(self.path)[1].lower() in (".yaml", ".yml")

    def load(self) -> Optional[FormState]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            return None
        if not content.strip():
            return None
        return state_from_yaml(content) if self.is_yaml else state_from_json(content)

    def save(self, state: FormState) -> None:
        content = state_to_yaml(state) if self.is_yaml else state_to_json(state)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(content)

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
