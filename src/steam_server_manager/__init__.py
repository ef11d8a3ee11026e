"""Steam Server Manager: install, update and supervise dedicated game servers."""

from .__version__ import __version__

__all__ = ["__version__"]
