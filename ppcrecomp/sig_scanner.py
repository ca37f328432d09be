"""Masked instruction-word pattern matching over executable sections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .binary_view import BinaryView
from .constants import HELPER_EXACT_WORDS, HELPER_WORD_PAIRS, WORD_SIZE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signature:
    """Instruction words plus an equal-length mask.

    ``entry_offset`` is counted in words from the first matched word to the
    address reported as the match entry point.
    """

    name: str
    pattern: Tuple[int, ...]
    mask: Tuple[int, ...]
    entry_offset: int = 0
    size: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ValueError(f"signature {self.name} has an empty pattern")
        if len(self.pattern) != len(self.mask):
            raise ValueError(
                f"signature {self.name}: pattern has {len(self.pattern)} words,"
                f" mask has {len(self.mask)}"
            )

    @classmethod
    def exact(cls, name: str, words: Sequence[int], *, entry_offset: int = 0) -> "Signature":
        return cls(name, tuple(words), tuple(0xFFFFFFFF for _ in words), entry_offset)

    def matches(self, words: Sequence[int]) -> bool:
        return all(
            (word & mask) == (pattern & mask)
            for word, pattern, mask in zip(words, self.pattern, self.mask)
        )


class SignatureScanner:
    """Search executable sections of a :class:`BinaryView` for signatures."""

    def __init__(self, view: BinaryView) -> None:
        self.view = view

    def scan(self, signature: Signature) -> List[int]:
        matches: List[int] = []
        span = len(signature.pattern)
        for section in self.view.executable_sections():
            words = [word for _, word in section.words()]
            for index in range(0, len(words) - span + 1):
                if signature.matches(words[index : index + span]):
                    address = section.base + index * WORD_SIZE
                    matches.append(address + signature.entry_offset * WORD_SIZE)
        logger.debug("signature %s: %d matches", signature.name, len(matches))
        return matches

    def scan_first(self, signature: Signature) -> Optional[int]:
        found = self.scan(signature)
        return found[0] if found else None

    def scan_all(self, signatures: Iterable[Signature]) -> Dict[str, List[int]]:
        return {signature.name: self.scan(signature) for signature in signatures}


# ---------------------------------------------------------------------------
# ABI helper signatures
# ---------------------------------------------------------------------------


def helper_signatures() -> List[Signature]:
    """Signatures for the register 14 entry of each save/restore family."""

    signatures = [Signature.exact(name, [word]) for word, name in HELPER_EXACT_WORDS.items()]
    signatures.extend(
        Signature.exact(name, [first, second]) for (first, second), name in HELPER_WORD_PAIRS.items()
    )
    return signatures


def detect_helpers(view: BinaryView) -> Dict[str, int]:
    """Return the first match address of every helper family found."""

    scanner = SignatureScanner(view)
    found: Dict[str, int] = {}
    for signature in helper_signatures():
        address = scanner.scan_first(signature)
        if address is not None:
            found[signature.name] = address
    if found:
        logger.info(
            "detected ABI helpers: %s",
            ", ".join(f"{name}=0x{address:08X}" for name, address in sorted(found.items())),
        )
    return found


__all__ = ["Signature", "SignatureScanner", "helper_signatures", "detect_helpers"]
