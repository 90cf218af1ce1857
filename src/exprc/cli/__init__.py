"""
exprc Command-Line Interface
============================

This package provides the ``exprc`` command, a Click-based application
that compiles a program given on the command line and either builds it,
prints its assembly or tree, or runs it in the emulator.
"""

__all__ = ["exprc"]
