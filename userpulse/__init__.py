"""UserPulse: competitive intelligence mined from community discussions."""

__version__ = "0.1.0"
