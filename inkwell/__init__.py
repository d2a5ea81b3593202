"""Inkwell: accounts, sessions and moderation for a small blog and forum."""

__version__ = "0.1.0"
