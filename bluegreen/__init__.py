"""Blue/green release orchestration.

Builds a candidate slot, gates it on health, flips the reverse proxy to it
and fails back automatically when the live slot degrades.
"""

__version__ = "0.1.0"
