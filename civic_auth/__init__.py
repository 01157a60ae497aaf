"""Authentication and account-security core for the civic engagement app."""

__version__ = "0.1.0"
