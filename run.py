#!/usr/bin/env python3
"""
Entry point for the Delta Exchange gateway.
Wraps delta_gateway/cli.py so `python run.py verify` works from a checkout.
"""
from delta_gateway.cli import app

if __name__ == "__main__":
    app()
