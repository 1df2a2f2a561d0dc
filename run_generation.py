#!/usr/bin/env python
"""Entry point script to run the generation lifecycle over a batch of records."""
from fabric_runner.runner import cli

if __name__ == "__main__":
    cli()
