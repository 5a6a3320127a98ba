import os
import sys

sys.path.insert(0, os.path.abspath("../src"))
# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# -- Project information -----------------------------------------------------

project = "LDAP schema provisioner"
copyright = "2024, LDAP schema provisioner maintainers"
author = "LDAP schema provisioner maintainers"
release = "v1"

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
]

napoleon_google_docstring = False
napoleon_numpy_docstring = True
templates_path = ["_templates"]
exclude_patterns = ["_build"]

language = "en"

autodoc_default_options = {
    "members": True,
    "undoc-members": True,
    "private-members": True,
}
autodoc_mock_imports = ["ldap3", "loguru", "requests", "yaml"]

# -- Options for HTML output -------------------------------------------------

html_theme = "classic"
html_theme_options = {"sidebarwidth": 400, "body_max_width": "none"}
