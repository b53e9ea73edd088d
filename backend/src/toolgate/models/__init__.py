"""Database models for Toolgate."""

from .base import BaseModel
from .plugin_registry import PluginEnablement, PluginFamily, PluginRecord

__all__ = ["BaseModel", "PluginEnablement", "PluginFamily", "PluginRecord"]
