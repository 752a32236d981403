"""guardpkg: pre-install risk scoring for npm packages."""

__version__ = "0.1.0"
