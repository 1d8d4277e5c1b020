"""boardflow - approval workflow core for workspace boards."""

__version__ = "0.1.0"
