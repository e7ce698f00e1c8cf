"""clhud: live heads-up display for a Claude Code session."""

__version__ = "0.1.0"
