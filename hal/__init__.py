"""
Hal - iterative execution runtime for coding-agent CLIs.

Drives external agent tools (claude, codex, pi, amp) against a PRD, one
story at a time, with a live terminal display and automatic recovery from
transient failures.
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
