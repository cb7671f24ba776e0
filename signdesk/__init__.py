"""SignDesk - subscription agreement signing service."""

__version__ = "1.0.0"
