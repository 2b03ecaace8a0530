"""
Count-up animation for dashboard card values.

A card value is either a number or a string embedding one (``"$50.00"``,
``"75%"``, ``"100 pts"``). The animation runs from zero to the target with an
ease-out-quart curve, keeps the prefix/suffix and the target's decimal
precision on every frame, and always ends on the exact target text.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Union

DEFAULT_DURATION_MS = 2000
DEFAULT_FRAME_MS = 16

_EMBEDDED_NUMBER_RE = re.compile(r"^(\D*)([\d.,]+)(\D*)$")

DisplayTarget = Union[int, float, str]


@dataclass(frozen=True)
class DisplayValue:
    prefix: str
    value: float
    suffix: str
    decimals: int


def parse_display_value(target: Any) -> Optional[DisplayValue]:
    """
    Split ``target`` into ``(prefix, value, suffix, decimals)``.

    Returns ``None`` for anything that cannot be animated; callers show such
    values unchanged.
    """

    if isinstance(target, bool):
        return None
    if isinstance(target, int):
        return DisplayValue(prefix="", value=float(target), suffix="", decimals=0)
    if isinstance(target, float):
        if not math.isfinite(target):
            return None
        return DisplayValue(prefix="", value=target, suffix="", decimals=0)
    if not isinstance(target, str):
        return None

    match = _EMBEDDED_NUMBER_RE.match(target)
    if match is None:
        return None
    prefix, number, suffix = match.groups()
    digits = number.replace(",", "")
    try:
        value = float(digits)
    except ValueError:
        return None
    decimals = len(digits.split(".", 1)[1]) if "." in digits else 0
    return DisplayValue(prefix=prefix, value=value, suffix=suffix, decimals=decimals)


def ease_out_quart(progress: float) -> float:
    progress = min(max(progress, 0.0), 1.0)
    return 1 - (1 - progress) ** 4


def final_text(target: DisplayTarget) -> str:
    if isinstance(target, str):
        return target
    if isinstance(target, float) and target.is_integer():
        return str(int(target))
    return str(target)


def frame_at(target: DisplayTarget, elapsed_ms: float, duration_ms: float = DEFAULT_DURATION_MS) -> Any:
    """
    Display text ``elapsed_ms`` into the animation. Opaque targets are
    returned as they are.
    """

    parsed = parse_display_value(target)
    if parsed is None:
        return target
    if duration_ms <= 0 or elapsed_ms >= duration_ms:
        return final_text(target)

    current = parsed.value * ease_out_quart(elapsed_ms / duration_ms)
    if parsed.decimals:
        formatted = f"{current:.{parsed.decimals}f}"
    else:
        formatted = str(math.floor(current))
    return f"{parsed.prefix}{formatted}{parsed.suffix}"


def animation_frames(
    target: DisplayTarget,
    duration_ms: float = DEFAULT_DURATION_MS,
    frame_ms: float = DEFAULT_FRAME_MS,
) -> Iterator[Any]:
    """
    Yield every frame of the count-up, starting at ``prefix + "0" + suffix``
    and finishing on the exact target.
    """

    parsed = parse_display_value(target)
    if parsed is None:
        yield target
        return

    yield f"{parsed.prefix}0{parsed.suffix}"
    steps = max(1, math.ceil(duration_ms / frame_ms)) if frame_ms > 0 else 1
    for step in range(1, steps):
        yield frame_at(target, step * frame_ms, duration_ms)
    yield final_text(target)
