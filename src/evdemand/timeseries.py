"""
Timeseries compositor.

Converts sampled charging sessions into fixed-resolution power vectors and
sums them bucket-wise into one raw aggregate demand series per replication.

A session starting at hour s with clipped end e on day d covers buckets
[floor(s * bph), ceil(e * bph)) offset by d * bpd, where bph is buckets per
hour and bpd buckets per day. Its power is added to every covered bucket.
"""

import math
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .data_structures import ChargingSession, SessionBatch
from .utils import buckets_per_day, buckets_per_hour


def bucket_range(
    start_hour: float,
    duration_hours: float,
    day: int,
    time_resolution: int
) -> Tuple[int, int]:
    """
    Absolute bucket index range [first, last) covered by one session.

    The session is clipped to the end of its day; a session starting at
    24h or with no duration covers nothing (first == last).

    Examples:
        >>> bucket_range(23.5, 3.0, 0, 15)
        (94, 96)
    """
    bph = buckets_per_hour(time_resolution)
    offset = day * buckets_per_day(time_resolution)
    end_hour = min(start_hour + duration_hours, 24.0)
    if start_hour >= 24.0 or duration_hours <= 0 or end_hour <= start_hour:
        return offset, offset
    first = int(math.floor(start_hour * bph))
    last = int(math.ceil(end_hour * bph))
    return offset + first, offset + last


def agent_demand_vector(
    sessions: Iterable[ChargingSession],
    days: int,
    time_resolution: int
) -> np.ndarray:
    """
    Power vector of a single agent.

    Args:
        sessions: The agent's sessions
        days: Simulated days
        time_resolution: Bucket length in minutes

    Returns:
        Array of length days * buckets_per_day (kW)
    """
    vector = np.zeros(days * buckets_per_day(time_resolution))
    for session in sessions:
        first, last = bucket_range(
            session.start_hour, session.duration_hours, session.day, time_resolution)
        vector[first:last] += session.power_kw
    return vector


def _expand_batches(
    batches: Sequence[SessionBatch],
    time_resolution: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (agent index, bucket index, power) for every covered bucket."""
    bph = buckets_per_hour(time_resolution)
    bpd = buckets_per_day(time_resolution)

    agents: List[np.ndarray] = []
    firsts: List[np.ndarray] = []
    lengths: List[np.ndarray] = []
    powers: List[np.ndarray] = []
    for batch in batches:
        if len(batch) == 0:
            continue
        starts = batch.start_hours
        ends = np.minimum(starts + batch.duration_hours, 24.0)
        first = np.floor(starts * bph).astype(np.int64)
        last = np.ceil(ends * bph).astype(np.int64)
        valid = (starts < 24.0) & (batch.duration_hours > 0) & (ends > starts)
        length = np.where(valid, np.maximum(last - first, 0), 0)

        agents.append(batch.agent_indices)
        firsts.append(first + batch.day * bpd)
        lengths.append(length)
        powers.append(batch.power_kw)

    if not agents:
        empty_i = np.zeros(0, dtype=np.int64)
        return empty_i, empty_i, np.zeros(0)

    agent_idx = np.concatenate(agents)
    first = np.concatenate(firsts)
    length = np.concatenate(lengths)
    power = np.concatenate(powers)

    total = int(length.sum())
    offsets = np.cumsum(length) - length
    within = np.arange(total, dtype=np.int64) - np.repeat(offsets, length)
    buckets = np.repeat(first, length) + within
    return np.repeat(agent_idx, length), buckets, np.repeat(power, length)


def compose_aggregate(
    batches: Sequence[SessionBatch],
    days: int,
    time_resolution: int
) -> np.ndarray:
    """
    Raw aggregate demand series of one replication.

    Equal to the bucket-wise sum of all agent vectors. Buckets without any
    session are exactly zero.

    Returns:
        Array of length days * buckets_per_day (kW)
    """
    length = days * buckets_per_day(time_resolution)
    _, buckets, power = _expand_batches(batches, time_resolution)
    return np.bincount(buckets, weights=power, minlength=length)[:length].astype(float)


def individual_demand_matrix(
    batches: Sequence[SessionBatch],
    n_agents: int,
    days: int,
    time_resolution: int
) -> np.ndarray:
    """
    Per-agent power vectors stacked as an (n_agents, series length) matrix.

    Memory grows with n_agents * series length; intended for small fleets
    and inspection.
    """
    length = days * buckets_per_day(time_resolution)
    matrix = np.zeros((n_agents, length))
    agents, buckets, power = _expand_batches(batches, time_resolution)
    np.add.at(matrix, (agents, buckets), power)
    return matrix
