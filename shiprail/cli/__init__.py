"""Shiprail CLI — Typer-based command-line interface.

Provides the ``shiprail`` command with subcommands for running the
pipeline for a commit, re-propagating a gate-cleared tag, inspecting the
run ledger, and running an in-memory demo.

All output uses Rich for formatted terminal display.
"""
