"""Teamflow: AI-assisted task decomposition and allocation for teams."""

__version__ = "0.3.0"
