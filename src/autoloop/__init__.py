"""Autonomous task loop driving CLI coding agents."""

__version__ = "0.1.0"
