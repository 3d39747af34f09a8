#!/usr/bin/env python
"""
Run script for the taxed token launchpad client.

This script makes the package importable from a checkout and runs the CLI.
"""

import os
import sys

# Ensure 'launchpad' directory is in the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from launchpad.main import run

if __name__ == "__main__":
    run()
