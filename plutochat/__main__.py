#!/usr/bin/env python3
"""Entry point for running as module."""

if __name__ == "__main__":
    from plutochat.cli.commands import cli
    cli()
