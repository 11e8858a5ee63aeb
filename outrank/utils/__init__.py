"""Shared utilities."""

from .config import Settings, get_settings
from .parsing import extract_json_array, extract_json_object, parse_model_json, string_list

__all__ = [
    "Settings",
    "get_settings",
    "extract_json_array",
    "extract_json_object",
    "parse_model_json",
    "string_list",
]
