"""Hallway: random three-person cohorts that pick what to talk about by Borda count."""

__version__ = "0.1.0"
