"""How many generation requests or clips a target duration needs.

``required_request_count`` gates batch queueing and ``required_clip_count``
drives the progress summary. They agree for the default constants but not in
general.
"""

from __future__ import annotations

import math
from typing import Optional

MINUTES_PER_CLIP = 3
CLIPS_PER_REQUEST = 2
BUFFER_REQUESTS = 5
MIN_CLIP_COUNT = 5


def required_request_count(
    duration_minutes: Optional[float],
    minutes_per_clip: int = MINUTES_PER_CLIP,
    clips_per_request: int = CLIPS_PER_REQUEST,
    buffer_requests: int = BUFFER_REQUESTS,
) -> int:
    if duration_minutes is None or duration_minutes <= 0:
        return 0
    minutes_per_request = minutes_per_clip * clips_per_request
    return max(1, math.ceil(duration_minutes / minutes_per_request + buffer_requests))


def required_clip_count(duration_minutes: Optional[float], minutes_per_clip: int = MINUTES_PER_CLIP) -> int:
    if duration_minutes is None or duration_minutes <= 0:
        return MIN_CLIP_COUNT
    return math.ceil(duration_minutes / (minutes_per_clip * 2) + 5)
