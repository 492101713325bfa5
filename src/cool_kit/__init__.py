"""cool-kit: deploy and operate a Coolify stack."""

__version__ = "0.1.0"

__all__ = ["__version__"]
