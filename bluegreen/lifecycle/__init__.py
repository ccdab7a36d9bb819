"""Process lifecycle helpers for long-running orchestrator commands."""

from .signals import SignalHandler

__all__ = ["SignalHandler"]
