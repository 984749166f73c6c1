"""TrueName - Context-aware name resolution with consent and OAuth sessions."""

__version__ = "0.1.0"

from truename.exceptions import TrueNameError

__all__ = ["__version__", "TrueNameError"]
