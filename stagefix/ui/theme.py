"""
stagefix visual design system.

All colors, styles, and icons as named constants.
Import from here; never hardcode markup strings in other modules.
"""

from rich.style import Style
from rich.theme import Theme


# ── Color palette ─────────────────────────────────────────────────────────────
# 24-bit hex, readable on dark and light terminal backgrounds alike.

COLOR_CRITICAL = "#D94848"      # Severity red
COLOR_WARNING  = "#C7800C"      # Amber
COLOR_PASS     = "#3FA866"      # Green
COLOR_INFO     = "#4A94BD"      # Slate blue
COLOR_BRAND    = "#6B8FCC"      # Periwinkle blue
COLOR_DIM      = "#808080"      # Medium gray
COLOR_COMMAND  = "#5FAFAF"      # Teal, commands stand out from dim text


# ── Rich styles ───────────────────────────────────────────────────────────────

STYLE_CRITICAL = Style(color=COLOR_CRITICAL, bold=True)
STYLE_WARNING  = Style(color=COLOR_WARNING,  bold=True)
STYLE_PASS     = Style(color=COLOR_PASS,     bold=True)
STYLE_INFO     = Style(color=COLOR_INFO)


# ── Severity icons ────────────────────────────────────────────────────────────

ICON_PASS = "✅"
ICON_WARNING = "⚠️ "
ICON_CRITICAL = "🔴"
ICON_INFO = "ℹ️ "
ICON_ERROR = "❌"
ICON_MANUAL = "📋"
ICON_REMOTE = "🛰️ "
ICON_LOCKED = "🔒"

SEVERITY_ICONS: dict[str, str] = {
    "critical": ICON_CRITICAL,
    "warning": ICON_WARNING,
    "info": ICON_INFO,
}

SEVERITY_STYLES: dict[str, Style] = {
    "critical": STYLE_CRITICAL,
    "warning": STYLE_WARNING,
    "info": STYLE_INFO,
}


# ── Outcome icons ─────────────────────────────────────────────────────────────

OUTCOME_ICONS: dict[str, str] = {
    "fixed": ICON_PASS,
    "manual": ICON_MANUAL,
    "failed": ICON_ERROR,
}

OUTCOME_STYLES: dict[str, Style] = {
    "fixed": STYLE_PASS,
    "manual": STYLE_WARNING,
    "failed": STYLE_CRITICAL,
}


# ── Stage labels ──────────────────────────────────────────────────────────────

STAGE_ICONS: dict[str, str] = {
    "dev": "🧑‍💻",
    "secrets": "🔐",
    "staging": "🧪",
    "prod": "🚀",
}

REACHABILITY_LABELS: dict[str, str] = {
    "local": "local",
    "api": "local (API)",
    "ssh": f"{ICON_REMOTE} over SSH",
    "workflow": f"{ICON_REMOTE} via CI workflow",
    "unreachable": f"{ICON_LOCKED} unreachable",
}


# ── Rich Theme ────────────────────────────────────────────────────────────────

STAGEFIX_THEME = Theme(
    {
        "critical": f"{COLOR_CRITICAL} bold",
        "warning":  f"{COLOR_WARNING} bold",
        "pass":     f"{COLOR_PASS} bold",
        "info":     COLOR_INFO,
        "brand":    f"{COLOR_BRAND} bold",
        "dim":      COLOR_DIM,
        "command":  COLOR_COMMAND,
    }
)
