"""Configuration inputs of a build: the .config snapshot and directory descriptors."""

from .descriptor import DESCRIPTOR_NAMES, DirectoryDescriptor, FlagEntry, ObjectListEntry, find_descriptor, load_descriptor, parse_descriptor
from .kconfig import DISABLED, ENABLED, BuildConfig, load_config, parse_config

__all__ = [
    "BuildConfig",
    "DESCRIPTOR_NAMES",
    "DISABLED",
    "DirectoryDescriptor",
    "ENABLED",
    "FlagEntry",
    "ObjectListEntry",
    "find_descriptor",
    "load_config",
    "load_descriptor",
    "parse_config",
    "parse_descriptor",
]
