"""Profile registry and YAML profile documents."""

from specialist_router.registry.documents import (
    discover_profile_files,
    dump_profile,
    load_profile_file,
    load_profile_text,
    profile_to_document,
)
from specialist_router.registry.profile_registry import (
    ProfileRegistry,
    ProfileView,
    builtin_profiles,
)

__all__ = [
    "ProfileRegistry",
    "ProfileView",
    "builtin_profiles",
    "discover_profile_files",
    "dump_profile",
    "load_profile_file",
    "load_profile_text",
    "profile_to_document",
]
