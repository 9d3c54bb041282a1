"""A fixed-size set of bit positions backed by 64-bit words."""

from __future__ import annotations

__all__ = ["Bitset"]

_WORD_BITS = 64
_WORD_MASK = (1 << _WORD_BITS) - 1


class Bitset:
    """A fixed number of bits, each either set or clear.

    Bitsets compare equal when their words match. They are hashable by
    content, so a bitset must not be changed while it is a dictionary key.
    """

    __slots__ = ("_words",)

    def __init__(self, bits: int) -> None:
        if bits < 0:
            raise ValueError(f"a bitset cannot hold {bits} bits")
        self._words = [0] * -(-bits // _WORD_BITS)

    @property
    def words(self) -> tuple[int, ...]:
        """The 64-bit words holding the bits, lowest positions first."""
        return tuple(self._words)

    def _locate(self, pos: int) -> tuple[int, int]:
        if pos < 0:
            raise IndexError(f"bit {pos} is out of range")
        major, minor = divmod(pos, _WORD_BITS)
        if major >= len(self._words):
            raise IndexError(f"bit {pos} is out of range")
        return major, minor

    def set(self, pos: int) -> None:
        """Set the bit at ``pos``."""
        major, minor = self._locate(pos)
        self._words[major] |= 1 << minor

    def clear(self, pos: int) -> None:
        """Clear the bit at ``pos``."""
        major, minor = self._locate(pos)
        self._words[major] &= ~(1 << minor) & _WORD_MASK

    def popcount(self) -> int:
        """Return how many bits are set."""
        return sum(word.bit_count() for word in self._words)

    def copy(self) -> Bitset:
        """Return an independent bitset with the same bits."""
        other = Bitset(0)
        other._words = list(self._words)
        return other

    def __contains__(self, pos: object) -> bool:
        if not isinstance(pos, int):
            return False
        try:
            major, minor = self._locate(pos)
        except IndexError:
            return False
        return bool(self._words[major] >> minor & 1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitset):
            return NotImplemented
        return self._words == other._words

    def __hash__(self) -> int:
        digest = self.popcount()
        for word in self._words:
            digest ^= word
        return digest

    def __repr__(self) -> str:
        bits = [
            index * _WORD_BITS + offset
            for index, word in enumerate(self._words)
            for offset in range(_WORD_BITS)
            if word >> offset & 1
        ]
        return f"Bitset(words={len(self._words)}, set={bits})"