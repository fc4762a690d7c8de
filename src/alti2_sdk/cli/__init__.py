"""
Alti-2 SDK Command-Line Interface
=================================

This package provides the command-line tool for the Alti-2 SDK:

- **altilink**: Device identification and logbook download

The tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["altilink"]
