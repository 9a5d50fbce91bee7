"""Command line interface for docka-backup."""

from .main import app, cli_main

__all__ = ['app', 'cli_main']
