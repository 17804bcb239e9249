"""Move Steam shader and Proton caches from secondary libraries into the primary one, and back."""

__version__ = "1.0.0"
