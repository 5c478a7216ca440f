"""
Know Your Grape tasting API
Slide ordering, session playback and response sync for live wine tastings
"""

__version__ = "1.0.0"
