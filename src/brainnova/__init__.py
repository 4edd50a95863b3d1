"""BRAINNOVA digital-economy index dashboard."""

from brainnova.config import APP_NAME, APP_VERSION

__version__ = APP_VERSION
__all__ = ["APP_NAME", "__version__"]
