"""
Project model used by the plugin host.

Provides project paths and a minimal configuration tree (directories,
stacks and plugin external data).
"""

from tmplugin.project.files import write_file
from tmplugin.project.paths import (
    host_path,
    is_within,
    new_path,
    prj_abs_path,
    to_project_path,
)
from tmplugin.project.tree import ConfigRoot, ConfigTree, Stack, load_root

__all__ = [
    "ConfigRoot",
    "ConfigTree",
    "Stack",
    "host_path",
    "is_within",
    "load_root",
    "new_path",
    "prj_abs_path",
    "to_project_path",
    "write_file",
]
