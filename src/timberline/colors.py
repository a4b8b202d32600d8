"""
Color helpers: seeded colors, WCAG contrast, shading and ANSI styles.

All functions are pure. Seeded colors are stable across processes because
``random.Random`` seeds deterministically from a string.
"""

import random

from timberline.constants import (
    DARK_BACKGROUND,
    LIGHT_BACKGROUND,
    MIN_CONTRAST_RATIO,
)

RESET = "\033[0m"
DIM = "\033[2m"

# Stop shading once a step improves contrast by less than this.
_MIN_CONTRAST_GAIN = 0.001


def seed_color(seed: str) -> str:
    """Deterministic ``#RRGGBB`` color for a seed string."""
    return f"#{random.Random(seed).getrandbits(24):06X}"


def hex_to_rgb(color: str) -> tuple[int, int, int]:
    value = int(color.lstrip("#"), 16)
    return (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF


def luminance(color: str) -> float:
    """Relative luminance of a hex color."""
    channels = []
    for v in hex_to_rgb(color):
        v /= 255
        channels.append(v / 12.92 if v <= 0.03928 else ((v + 0.055) / 1.055) ** 2.4)
    r, g, b = channels
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(luminance_a: float, luminance_b: float, delta: float = 0.05) -> float:
    lighter, darker = max(luminance_a, luminance_b), min(luminance_a, luminance_b)
    return (lighter + delta) / (darker + delta)


def shade_color(color: str, percent: float) -> str:
    """Lighten ``color`` by ``percent`` when positive, darken it when negative."""
    target = 0 if percent < 0 else 255
    p = abs(percent)
    r, g, b = (round((target - c) * p) + c for c in hex_to_rgb(color))
    return f"#{r:02X}{g:02X}{b:02X}"


def background_for(dark_theme: bool) -> str:
    return DARK_BACKGROUND if dark_theme else LIGHT_BACKGROUND


def ensure_contrast(color: str, dark_theme: bool) -> str:
    """
    Shade ``color`` until it is legible against the theme background.

    Lightens on a dark theme and darkens on a light one, 10% per step, until
    the contrast ratio reaches MIN_CONTRAST_RATIO or a step stops improving it.
    """
    bg_luminance = luminance(background_for(dark_theme))
    step = 0.1 if dark_theme else -0.1
    current = contrast_ratio(bg_luminance, luminance(color))

    while current < MIN_CONTRAST_RATIO:
        shaded = shade_color(color, step)
        shaded_contrast = contrast_ratio(bg_luminance, luminance(shaded))
        if shaded_contrast - current < _MIN_CONTRAST_GAIN:
            break
        color, current = shaded, shaded_contrast
    return color


def ansi(color: str) -> str:
    """24-bit ANSI foreground escape for a hex color."""
    r, g, b = hex_to_rgb(color)
    return f"\033[38;2;{r};{g};{b}m"


def paint(color: str, text: str) -> str:
    return f"{ansi(color)}{text}{RESET}"


def dim(text: str) -> str:
    return f"{DIM}{text}{RESET}"
