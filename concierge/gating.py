"""Gating — decide whether an inbound message gets a reply at all.

Direct conversations are always answered. In groups the agent only answers
when addressed with one of its handles (``@concierge``), and the handle is
stripped before the text goes any further.
"""

import re
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class GateDecision:
    respond: bool
    cleaned_text: str


class GatingPolicy:
    """Pure mention check; no state besides the configured handles."""

    def __init__(self, handles: Iterable[str] = ()):
        self._handles: list[str] = []
        self._pattern = None
        for handle in handles:
            self.add_handle(handle)

    @property
    def handles(self) -> list[str]:
        return list(self._handles)

    def add_handle(self, handle: str):
        """Register another handle (with or without the leading ``@``)."""
        handle = handle.strip().lstrip("@")
        if not handle or handle.lower() in (h.lower() for h in self._handles):
            return
        self._handles.append(handle)
        alternatives = "|".join(re.escape(h) for h in sorted(self._handles, key=len, reverse=True))
        # "@name", optionally followed by "," or ":"; case-insensitive, whole word
        self._pattern = re.compile(rf"(?<![\w@])@(?:{alternatives})(?!\w)[,:]?", re.IGNORECASE)

    def is_mentioned(self, text: str) -> bool:
        return bool(self._pattern and self._pattern.search(text))

    def strip_mentions(self, text: str) -> str:
        if not self._pattern:
            return text
        stripped = self._pattern.sub(" ", text)
        return re.sub(r"[ \t]{2,}", " ", stripped).strip()

    def evaluate(self, text: str, is_group: bool) -> GateDecision:
        """Decide whether to respond and return the text to process."""
        if not is_group:
            return GateDecision(respond=True, cleaned_text=text)

        if not self.is_mentioned(text):
            return GateDecision(respond=False, cleaned_text=text)

        return GateDecision(respond=True, cleaned_text=self.strip_mentions(text))
