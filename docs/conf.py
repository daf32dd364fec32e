import os
import sys

sys.path.insert(0, os.path.abspath(".."))

project = "gpu_hashtable"
copyright = "2024, tinker495"
author = "tinker495"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "myst_parser",
]

templates_path = ["_templates"]
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

html_theme = "sphinx_rtd_theme"
html_static_path = ["_static"]

autodoc_mock_imports = ["jax.experimental.pallas"]
napoleon_google_docstring = True
napoleon_numpy_docstring = False
