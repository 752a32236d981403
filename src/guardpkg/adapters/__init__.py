"""Package registry adapters."""

from guardpkg.adapters.base import BaseAdapter
from guardpkg.adapters.npm import NpmAdapter

__all__ = ["BaseAdapter", "NpmAdapter"]
