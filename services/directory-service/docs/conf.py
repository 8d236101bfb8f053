"""Sphinx configuration for the Directory Service documentation."""

from __future__ import annotations

import os
import sys
from datetime import datetime

SERVICE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SCHEMAS_DIR = os.path.abspath(os.path.join(SERVICE_DIR, "..", "..", "libs", "python"))
sys.path[:0] = [SERVICE_DIR, SCHEMAS_DIR]


project = "Directory Service"
author = "Directory Admin Team"
copyright = f"{datetime.now():%Y}, {author}"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.intersphinx",
    "sphinx.ext.napoleon",
    "sphinx_autodoc_typehints",
]

# The engine docs build without a database or redis at hand.
autodoc_mock_imports = ["psycopg", "psycopg_pool", "redis"]
autodoc_typehints = "description"
autodoc_member_order = "bysource"
napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "pydantic": ("https://docs.pydantic.dev/latest", None),
}

exclude_patterns: list[str] = ["_build"]
html_theme = "alabaster"
html_title = "Directory Service: entitlements and flow-account pool"
