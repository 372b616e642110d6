"""
Half-open channel intervals and sorted, non-overlapping interval covers

A cover is a tuple of Interval sorted by low channel in which no two members
intersect. Extraction over a cover concatenates per-interval slices in cover
order, so every array extracted over the same cover is aligned index for index.
"""

from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

import numpy as np


@dataclass(frozen=True, order=True)
class Interval:
    """Channel range [low, high)"""
    low: int
    high: int

    def __post_init__(self):
        if self.high < self.low:
            raise ValueError(f"Interval high ({self.high}) is below low ({self.low})")

    @property
    def length(self) -> int:
        return self.high - self.low

    def is_empty(self) -> bool:
        return self.high == self.low

    def contains(self, channel: int) -> bool:
        return self.low <= channel < self.high

    def intersects(self, other: 'Interval') -> bool:
        """True when the intervals overlap or touch"""
        return self.low <= other.high and self.high >= other.low

    def union(self, other: 'Interval') -> 'Interval':
        return Interval(min(self.low, other.low), max(self.high, other.high))

    def __str__(self):
        return f"[{self.low}, {self.high})"


Cover = Tuple[Interval, ...]


def add_interval(cover: Sequence[Interval], interval: Interval) -> Cover:
    """
    Insert an interval into a cover, merging it with every member it
    overlaps or touches

    Args:
        cover: Sorted, non-overlapping intervals
        interval: Interval to add (empty intervals leave the cover unchanged)

    Returns:
        New sorted, non-overlapping cover
    """
    if interval.is_empty():
        return tuple(cover)
    keep = []
    merged = interval
    for member in cover:
        if member.intersects(merged):
            merged = merged.union(member)
        else:
            keep.append(member)
    keep.append(merged)
    return tuple(sorted(keep))


def build_cover(intervals: Iterable[Interval]) -> Cover:
    """Cover of the union of an arbitrary collection of intervals"""
    cover: Cover = ()
    for interval in intervals:
        cover = add_interval(cover, interval)
    return cover


def validate(cover: Sequence[Interval]):
    """
    Check that a cover is sorted and non-overlapping

    Raises:
        ValueError: If two members are out of order or overlap
    """
    for prev, curr in zip(cover, cover[1:]):
        if curr.low < prev.high:
            raise ValueError(f"Interval cover is out of order or overlapping at {prev} and {curr}")


def cover_length(cover: Sequence[Interval]) -> int:
    return sum(iv.length for iv in cover)


def extract(data, cover: Sequence[Interval]) -> np.ndarray:
    """
    Concatenate data[low:high] for each interval of the cover, in order

    Args:
        data: One-dimensional array indexed by channel
        cover: Sorted, non-overlapping intervals within the bounds of data

    Returns:
        Array of length cover_length(cover)
    """
    data = np.asarray(data, dtype=float)
    if not cover:
        return np.zeros(0)
    return np.concatenate([data[iv.low:iv.high] for iv in cover])


def non_zero_interval(data) -> Interval:
    """
    Smallest interval holding every non-zero value of data

    Returns:
        Interval from the first to one past the last non-zero index, or the
        empty Interval(0, 0) when data is all zero
    """
    nz = np.flatnonzero(np.asarray(data) != 0.0)
    if len(nz) == 0:
        return Interval(0, 0)
    return Interval(int(nz[0]), int(nz[-1]) + 1)
