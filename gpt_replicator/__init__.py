"""Clone a GPT partition layout onto a larger disk and recreate its filesystems."""

from .__version__ import __version__

__all__ = ["__version__"]
