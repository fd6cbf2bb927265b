import pathlib
import sys

# Make the tileserver package importable from backend/.
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent.parent))

project = 'Tile Server API'
copyright = '2025, Tile Server contributors'
author = 'Tile Server contributors'
release = '0.1.0'
html_title = f'{project} {release}'

templates_path = ['_templates']
exclude_patterns = ['_build', 'generated/*.tests.*']

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.autosummary',
    'sphinx.ext.intersphinx',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
    'myst_parser',
]

autosummary_generate = True
autosummary_imported_members = False

napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_init_with_doc = True
napoleon_use_param = True
napoleon_use_ivar = True

typehints_fully_qualified = False
always_document_param_types = True

autodoc_member_order = 'bysource'
autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
}

# Documentation builds without a database driver installed.
autodoc_mock_imports = ['psycopg2']

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}

myst_enable_extensions = ['colon_fence']
source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}

html_theme = 'sphinx_rtd_theme'
html_theme_options = {
    'collapse_navigation': False,
    'navigation_depth': 3,
}
