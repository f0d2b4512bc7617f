#!/usr/bin/env python3
"""Syncthing on a GCP free-tier VM: run from a source checkout."""

from syncdock.syncdock import main

if __name__ == "__main__":
    main()
