"""
labels.py - Label family resolution

Maps a user pattern such as 'CD8 PD1' to the concrete vocabulary labels it
stands for ('CD8 PD1+', 'CD8 PD1-'). Results are always in vocabulary order.
"""
from typing import List, Sequence


class LabelResolver:
    """Base resolver: subclasses implement ``matches``."""

    def matches(self, pattern: str, label: str) -> bool:
        raise NotImplementedError

    def resolve(self, pattern: str, labels: Sequence[str]) -> List[str]:
        """All labels matching ``pattern``, in vocabulary order."""
        return [label for label in labels if self.matches(pattern, label)]


class SubstringResolver(LabelResolver):
    """Fixed, case-sensitive substring match (no regex)."""

    def matches(self, pattern: str, label: str) -> bool:
        return pattern in label


class SuffixFamilyResolver(LabelResolver):
    """
    Exact family match: ``pattern`` itself, or ``pattern`` followed by one
    of ``suffixes``.

    Avoids substring false positives, e.g. 'CD8' matching 'CD8A+'.
    """

    def __init__(self, suffixes: Sequence[str] = ('+', '-')):
        self.suffixes = tuple(suffixes)

    def matches(self, pattern: str, label: str) -> bool:
        if label == pattern:
            return True
        return any(label == pattern + suffix for suffix in self.suffixes)


DEFAULT_RESOLVER = SubstringResolver()
