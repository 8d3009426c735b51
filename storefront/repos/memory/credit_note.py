"""Memory implementation of CreditNoteSequence."""

from storefront.repositories import CreditNoteSequence


class MemoryCreditNoteSequence(CreditNoteSequence):
    def __init__(self, start: int = 1) -> None:
        self._next = start

    async def next_value(self) -> int:
        value = self._next
        self._next += 1
        return value
