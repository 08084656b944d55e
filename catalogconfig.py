"""
This module defines the data structures for the region catalog.
Entries are frozen once parsed; the loader settings come from catalog.yaml.
"""

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

DEFAULT_PATTERNS = ("*.yaml", "*.yml")


def _frozen_map(values: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class SourceContext:
    register: str
    version: str

    @property
    def source(self) -> str:
        major = self.version.split(".")[0]
        return ".".join([self.register, major])


@dataclass(frozen=True)
class RegionEntry:
    name: str
    description: str
    auth_ref: str
    region: str
    availability_zones: Tuple[str, ...]
    image_map: Mapping[str, str]
    repo_bootstrap_map: Mapping[str, str] = field(default_factory=dict)
    source: Optional[str] = None
    service: str = ""
    cookbook: Optional[str] = None
    provides: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Dataclass is frozen, so normalize through object.__setattr__.
        object.__setattr__(self, "availability_zones", tuple(self.availability_zones))
        object.__setattr__(self, "image_map", _frozen_map(self.image_map))
        object.__setattr__(self, "repo_bootstrap_map", _frozen_map(self.repo_bootstrap_map))
        object.__setattr__(self, "provides", _frozen_map(self.provides))
        if not self.service:
            object.__setattr__(self, "service", self.region)

    def __hash__(self):
        # Mapping fields are unhashable; equal entries share these fields.
        return hash((self.name, self.region, self.availability_zones))

    @property
    def os_labels(self) -> Tuple[str, ...]:
        return tuple(sorted(self.image_map))

    def image_for(self, label: str) -> str:
        """Return the machine image id for an OS label."""
        return self.image_map[label]

    def bootstrap_for(self, label: str) -> Optional[str]:
        """Return the repo bootstrap command for an OS label.

        None means the label needs no bootstrap. Labels without an image
        raise KeyError.
        """
        if label not in self.image_map:
            raise KeyError(label)
        return self.repo_bootstrap_map.get(label)

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "auth": self.auth_ref,
            "service": self.service,
        }
        if self.cookbook is not None:
            document["cookbook"] = self.cookbook
        if self.provides:
            document["provides"] = dict(self.provides)
        document["attributes"] = {
            "region": self.region,
            "availability_zones": list(self.availability_zones),
            "imagemap": dict(self.image_map),
            "repo_map": dict(self.repo_bootstrap_map),
        }
        return document


@dataclass(frozen=True)
class CatalogSettings:
    catalog_dir: str
    context: Optional[SourceContext] = None
    patterns: Tuple[str, ...] = DEFAULT_PATTERNS
    strict_bootstrap_keys: bool = True
    fail_fast: bool = False
    fail_on_error: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[str] = None) -> "CatalogSettings":
        catalog_dir = data.get("catalog_dir")
        if not isinstance(catalog_dir, str) or not catalog_dir.strip():
            raise ValueError("catalog_dir must be a non-empty string")
        if base_dir and not os.path.isabs(catalog_dir):
            catalog_dir = os.path.join(base_dir, catalog_dir)

        register = data.get("register")
        version = data.get("version")
        context = None
        if register is not None or version is not None:
            if not register or version is None:
                raise ValueError("register and version must be set together")
            context = SourceContext(str(register), str(version))

        patterns = data.get("patterns", list(DEFAULT_PATTERNS))
        if isinstance(patterns, str):
            patterns = [patterns]
        if not isinstance(patterns, list) or not patterns or not all(isinstance(p, str) and p for p in patterns):
            raise ValueError("patterns must be a non-empty list of glob strings")

        flags = {}
        for key in ("strict_bootstrap_keys", "fail_fast", "fail_on_error"):
            if key in data:
                if not isinstance(data[key], bool):
                    raise ValueError(f"{key} must be true or false")
                flags[key] = data[key]

        return cls(catalog_dir=catalog_dir, context=context, patterns=tuple(patterns), **flags)
