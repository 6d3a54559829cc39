"""Track simplification: drop near-duplicate samples, then evenly downsample."""

from typing import List, Sequence

from peoplemap.geo import haversine_meters
from peoplemap.history.models import TrackPoint

# Two samples closer than this in both space and time are the same fix
DUPLICATE_DISTANCE_M = 0.5
DUPLICATE_SECONDS = 1.0


def dedupe_points(points: Sequence[TrackPoint], min_distance_m: float) -> List[TrackPoint]:
    """Sort by time, then keep a point only if it moved at least min_distance_m from the last kept one."""
    kept: List[TrackPoint] = []
    for point in sorted(points, key=lambda p: p.ts):
        if not kept:
            kept.append(point)
            continue
        last = kept[-1]
        distance = haversine_meters(last.lat, last.lon, point.lat, point.lon)
        same_time = abs((point.ts - last.ts).total_seconds()) < DUPLICATE_SECONDS
        if distance < DUPLICATE_DISTANCE_M and same_time:
            continue
        if distance < min_distance_m:
            continue
        kept.append(point)
    return kept


def downsample_points(points: Sequence[TrackPoint], max_points: int) -> List[TrackPoint]:
    """
    Evenly spaced subset of at most max_points (plus the last point if rounding missed it).
    No-op when the track already fits or max_points <= 1.
    """
    if len(points) <= max_points or max_points <= 1:
        return list(points)
    last_index = len(points) - 1
    step = last_index / (max_points - 1)
    seen = set()
    sampled: List[TrackPoint] = []
    for i in range(max_points):
        index = min(max(round(i * step), 0), last_index)
        if index not in seen:
            seen.add(index)
            sampled.append(points[index])
    if not sampled or sampled[-1].ts != points[-1].ts:
        sampled.append(points[-1])
    return sorted(sampled, key=lambda p: p.ts)


def simplify_points(points: Sequence[TrackPoint], max_points: int, min_distance_m: float) -> List[TrackPoint]:
    if not points:
        return []
    return downsample_points(dedupe_points(points, min_distance_m), max_points)
