"""Colour palette and rich styles for the terminal display."""

from __future__ import annotations

from rich.style import Style

# Color palette
COLOR_SUCCESS = "#00D787"
COLOR_ERROR = "#FF5F87"
COLOR_WARNING = "#FFAF00"
COLOR_INFO = "#5FAFFF"
COLOR_MUTED = "#8C8C8C"  # Brightened for readability
COLOR_ACCENT = "#AF87FF"

# Text styles
STYLE_SUCCESS = Style(color=COLOR_SUCCESS, bold=True)
STYLE_ERROR = Style(color=COLOR_ERROR, bold=True)
STYLE_WARNING = Style(color=COLOR_WARNING, bold=True)
STYLE_INFO = Style(color=COLOR_INFO)
STYLE_MUTED = Style(color=COLOR_MUTED)
STYLE_ACCENT = Style(color=COLOR_ACCENT)
STYLE_BOLD = Style(bold=True)

# Header icon and tool history arrow
COMMAND_ICON = "◆"
TOOL_ARROW = "▶"
STYLE_COMMAND_ICON = Style(color=COLOR_ACCENT, bold=True)
STYLE_TOOL_ARROW = Style(color=COLOR_ACCENT)

# Tool event styles
STYLE_TOOL_READ = Style(color=COLOR_MUTED)
STYLE_TOOL_WRITE = Style(color=COLOR_SUCCESS)
STYLE_TOOL_BASH = Style(color=COLOR_WARNING)

# Progress bar
STYLE_PROGRESS_FILLED = Style(color=COLOR_INFO)
STYLE_PROGRESS_EMPTY = Style(color=COLOR_MUTED)
ITERATION_BAR_WIDTH = 10

# Spinner: static brackets around a dot cycling cyan -> purple -> pink -> cyan
SPINNER_BRACKET_COLOR = "#5F5F87"
SPINNER_TEXT_GLOW_COLOR = "#D7D7FF"
SPINNER_TEXT_HIGHLIGHT_COLOR = "#FFFFFF"
SPINNER_GRADIENT = [
    "#00D7FF",  # cyan
    "#00AFFF",
    "#5F87FF",
    "#875FFF",  # purple
    "#AF5FFF",
    "#D75FAF",
    "#FF5F87",  # pink
    "#FF87AF",
    "#D75FAF",
    "#AF5FFF",
    "#875FFF",  # back to purple
    "#5F87FF",
    "#00AFFF",
]
SPINNER_TICK_SECONDS = 0.08

# Box border colours for rich panels
BOX_HEADER = COLOR_INFO
BOX_SUCCESS = COLOR_SUCCESS
BOX_ERROR = COLOR_ERROR
BOX_WARNING = COLOR_WARNING
