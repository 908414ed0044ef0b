#!/usr/bin/env python3
"""Entry point for PyInstaller-frozen executable."""

import sys
import os

# When frozen, resolve relative paths next to the executable
if getattr(sys, 'frozen', False):
    os.chdir(os.path.dirname(sys.executable))

from spu_bridge.cli import main
sys.exit(main())
