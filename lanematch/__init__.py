"""
LaneMatch Package
=================

Session engine for a timed two-lane matching game: emoji fall down two
lanes and the player taps the ones that match the current target.

The engine is headless. A presentation layer drives it through
GameSession commands and reads SessionSnapshot views.
"""

__version__ = "0.1.0"
