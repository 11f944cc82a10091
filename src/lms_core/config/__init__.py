from .loader import load_settings, merge_dicts, read_yaml
from .schema import Settings

__all__ = ["Settings", "load_settings", "merge_dicts", "read_yaml"]
