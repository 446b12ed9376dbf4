"""
MoodHabit analytics core.

Streaks, mood trends, mood–habit correlations, adaptive thresholds and
predictive views over a user's habit and mood logs.
"""

__version__ = "1.0.0"
