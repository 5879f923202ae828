"""Template management.

Provides a shared Jinja template environment used whenever the provisioner
generates file contents that are stored in Kubernetes objects.
"""

from jinja2 import Environment, PackageLoader, StrictUndefined

__all__ = ["templates"]

templates = Environment(
    loader=PackageLoader("provisioner", package_path="templates"),
    autoescape=False,
    keep_trailing_newline=True,
    lstrip_blocks=True,
    trim_blocks=True,
    undefined=StrictUndefined,
)
"""The template environment."""
