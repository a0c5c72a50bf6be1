"""Riot API access."""

from .client import MatchSource, RiotMatchSource

__all__ = ["MatchSource", "RiotMatchSource"]
