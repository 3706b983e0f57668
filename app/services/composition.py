from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import numpy as np

from app.models.domain import Clip, CompositionResult, GenerationStatus

log = logging.getLogger(__name__)


class InsufficientClipsError(Exception):
    """Raised when the available clips cannot cover the target duration."""


def available_clips(pool: Iterable[Clip]) -> List[Clip]:
    unique: dict = {}
    for clip in pool:
        if clip.status == GenerationStatus.COMPLETED and clip.duration_seconds is not None:
            unique.setdefault(clip.id, clip)
    return list(unique.values())


def select_clips(
    pool: Iterable[Clip],
    target_duration_seconds: int,
    rng: Optional[np.random.Generator] = None,
) -> CompositionResult:
    """Pick clips in random order until their durations reach the target.

    Greedy over a shuffled pool: stops at the first clip that meets the target
    and makes no attempt to minimise overshoot.
    """
    clips = available_clips(pool)
    if not clips:
        raise InsufficientClipsError("No completed clips available")

    total_available = sum(clip.duration_seconds for clip in clips)
    if total_available < target_duration_seconds:
        raise InsufficientClipsError(
            f"Insufficient total clip duration: {total_available}s available, {target_duration_seconds}s needed"
        )

    rng = rng or np.random.default_rng()
    selected: List[Clip] = []
    total = 0
    for index in rng.permutation(len(clips)):
        if total >= target_duration_seconds:
            break
        clip = clips[int(index)]
        selected.append(clip)
        total += clip.duration_seconds

    if total < target_duration_seconds:
        raise InsufficientClipsError(
            f"Insufficient clip duration after selection: {total}s selected, {target_duration_seconds}s needed"
        )

    log.info(
        "selected %d clips: %ds total (target %ds) from %d available",
        len(selected),
        total,
        target_duration_seconds,
        len(clips),
    )
    return CompositionResult(
        selected_clips=selected,
        total_duration_seconds=total,
        clip_count=len(selected),
        target_duration_seconds=target_duration_seconds,
    )
