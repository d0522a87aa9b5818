"""Derive the storefront's CSS custom properties from a theme record."""
import re

from schemas import Theme

DEFAULT_THEME = Theme(name="Default", is_active=True).model_dump()

HSL_PATTERN = re.compile(r"hsl\(\s*([\d.]+)[,\s]+([\d.]+)%?[,\s]+([\d.]+)%?\s*\)")
LIGHT_FOREGROUND = "hsl(210 40% 98%)"
DARK_FOREGROUND = "hsl(222.2 84% 4.9%)"


def _fmt(value: float) -> str:
    return f"{value:g}"


def contrast_color(color: str) -> str:
    match = HSL_PATTERN.search(color)
    if match and float(match.group(3)) < 50:
        return LIGHT_FOREGROUND
    return DARK_FOREGROUND


def adjust_lightness(color: str, adjustment: float) -> str:
    """Shift the lightness of an ``hsl(...)`` color, clamped to 0..100."""
    match = HSL_PATTERN.search(color)
    if not match:
        return color
    hue, saturation, lightness = (float(g) for g in match.groups())
    lightness = max(0.0, min(100.0, lightness + adjustment))
    return f"hsl({_fmt(hue)} {_fmt(saturation)}% {_fmt(lightness)}%)"


def style_tokens(theme: dict) -> dict:
    t = {**DEFAULT_THEME, **{k: v for k, v in theme.items() if v is not None}}
    primary, secondary, accent = t["primary_color"], t["secondary_color"], t["accent_color"]
    background, text = t["background_color"], t["text_color"]
    border = adjust_lightness(text, 85)
    return {
        "--primary": primary,
        "--primary-foreground": contrast_color(primary),
        "--secondary": secondary,
        "--secondary-foreground": text,
        "--accent": accent,
        "--accent-foreground": contrast_color(accent),
        "--background": background,
        "--foreground": text,
        "--muted": secondary,
        "--muted-foreground": adjust_lightness(text, 30),
        "--card": background,
        "--card-foreground": text,
        "--popover": background,
        "--popover-foreground": text,
        "--border": border,
        "--input": border,
        "--ring": primary,
        "--font-sans": t["font_family"],
        "--radius": t["border_radius"],
        "--sidebar-background": adjust_lightness(background, -5),
        "--sidebar-foreground": text,
        "--sidebar-primary": primary,
        "--sidebar-primary-foreground": contrast_color(primary),
        "--sidebar-accent": secondary,
        "--sidebar-accent-foreground": contrast_color(secondary),
        "--sidebar-border": border,
        "--sidebar-ring": primary,
        "--chart-1": primary,
        "--chart-2": accent,
        "--chart-3": adjust_lightness(primary, 10),
        "--chart-4": adjust_lightness(accent, -10),
        "--chart-5": adjust_lightness(primary, -10),
    }
