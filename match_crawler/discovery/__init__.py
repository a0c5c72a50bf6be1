"""Frontier replenishment from the seed pool and the match repository."""

from .seeding import Seeder

__all__ = ["Seeder"]
