"""
HumIQ Work Sessions
===================

AI-led work session interviews: staged prompts over an append-only event
log, closed by a synthesized Evidence Pack.
"""

__version__ = "0.1.0"
