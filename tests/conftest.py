"""Pytest configuration for path setup.

The hub package lives under ``hub/src``.  When pytest runs from a source
checkout without an editable install, neither the repository root (for
``tests.helpers``) nor ``hub/src`` (for ``fxhub``) is on ``sys.path``;
this file adds both before collection.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]

for path in (ROOT, ROOT / "hub" / "src"):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
