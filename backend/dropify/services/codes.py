from __future__ import annotations

import random
import re

_HANDLE_STRIP_RE = re.compile(r"[^A-Z0-9]")


def normalize_handle(handle: str | None) -> str:
    return _HANDLE_STRIP_RE.sub("", (handle or "").upper())


def generate_code(prefix: str, claimant_handle: str | None, *, rng: random.Random | None = None) -> str:
    """Build a viewer-friendly code such as ``DROP-SOMEVIEWER-4821``.

    Not globally unique: the 4-digit suffix only keeps collisions rare for codes that live
    minutes. A duplicate rejected by the commerce platform surfaces as a failed issuance.
    """
    suffix = (rng or random).randint(1000, 9999)
    return f"{prefix}{normalize_handle(claimant_handle)}-{suffix}"
