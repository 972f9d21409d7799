"""AppVet - automated security review pipeline for marketplace uploads."""

__version__ = "1.0.0"
