from __future__ import annotations

"""Hard limits to keep renders bounded.

Enforced when a render config is validated and when a pattern is loaded.
"""

MAX_CHANNELS = 64
MAX_STEPS = 1024

MAX_SAMPLE_RATE = 192_000
MAX_SECONDS_LIMIT = 600.0  # also the worst-case render memory bound
MAX_BPM = 999.0
MAX_STEPS_PER_BEAT = 64
