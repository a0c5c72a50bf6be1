"""Core types and helpers shared by every crawler component."""
