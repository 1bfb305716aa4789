from __future__ import annotations
import random
from datetime import datetime

_rng = random.SystemRandom()


def generate_repair_id(now: datetime, rng: random.Random = None) -> str:
    """REP + YYMMDD + 4 random digits. Unique only with high probability."""
    suffix = (rng or _rng).randrange(10000)
    return f"REP{now:%y%m%d}{suffix:04d}"