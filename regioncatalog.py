import fnmatch
import os
import pulumi
import pulumi_aws as aws
import yaml
from collections.abc import Hashable
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from catalogconfig import CatalogSettings, RegionEntry, SourceContext

KNOWN_AWS_REGIONS = frozenset(region.value for region in aws.Region)


class UniqueKeyLoader(yaml.SafeLoader):
    """Safe loader that rejects repeated keys instead of keeping the last one."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            if key_node.tag == "tag:yaml.org,2002:merge":
                continue
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, Hashable):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class CatalogError(ValueError):
    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)
        self.message = message

    def with_path(self, path: str) -> "CatalogError":
        """Return a copy of this error attributed to a file."""
        return CatalogError(self.message, path=path)


class ParseError(CatalogError):
    def with_path(self, path: str) -> "ParseError":
        return ParseError(self.message, path=path)


class ValidationError(CatalogError):
    def __init__(self, message: str, field: str, key: Optional[str] = None, path: Optional[str] = None):
        self.field = field
        self.key = key
        super().__init__(message, path=path)

    def with_path(self, path: str) -> "ValidationError":
        return ValidationError(self.message, self.field, key=self.key, path=path)


@dataclass(frozen=True)
class LoadFailure:
    path: str
    error: CatalogError

    def __str__(self) -> str:
        return str(self.error)


class CatalogLoadError(CatalogError):
    def __init__(self, failures: List[LoadFailure]):
        self.failures = tuple(failures)
        summary = "; ".join(str(f) for f in self.failures)
        super().__init__(f"{len(self.failures)} region file(s) failed to load: {summary}")


def _require_string(value: Any, field: str, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"'{field}' must be a string", field)
    if not allow_empty and not value.strip():
        raise ValidationError(f"'{field}' must not be empty", field)
    return value


def _decode_embedded(value: Any, field: str, expected: type) -> Any:
    # Legacy records carry arrays and objects as encoded strings.
    if isinstance(value, str):
        if not value.strip():
            return expected()
        try:
            value = yaml.load(value, Loader=UniqueKeyLoader)
        except yaml.YAMLError as e:
            raise ParseError(f"'{field}' is not a well-formed encoded {expected.__name__}: {e}")
        if value is None:
            return expected()
        if not isinstance(value, expected):
            raise ParseError(f"'{field}' must decode to a {expected.__name__}, got {type(value).__name__}")
    return value


def parse_zones(value: Any) -> Tuple[str, ...]:
    if value is None:
        raise ValidationError("'availability_zones' is required", "availability_zones")
    zones = _decode_embedded(value, "availability_zones", list)
    if not isinstance(zones, list):
        raise ValidationError("'availability_zones' must be a list", "availability_zones")
    if not zones:
        raise ValidationError("'availability_zones' must not be empty", "availability_zones")
    seen = set()
    for zone in zones:
        if not isinstance(zone, str) or not zone.strip():
            raise ValidationError(f"invalid availability zone {zone!r}", "availability_zones")
        if zone in seen:
            raise ValidationError(f"duplicate availability zone '{zone}'", "availability_zones", key=zone)
        seen.add(zone)
    return tuple(zones)


def parse_label_map(value: Any, field: str, required: bool = True) -> Dict[str, str]:
    if value is None:
        if required:
            raise ValidationError(f"'{field}' is required", field)
        return {}
    mapping = _decode_embedded(value, field, dict)
    if not isinstance(mapping, dict):
        raise ValidationError(f"'{field}' must be a mapping", field)
    if required and not mapping:
        raise ValidationError(f"'{field}' must not be empty", field)
    for key, item in mapping.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(f"'{field}' has an invalid label {key!r}", field, key=str(key))
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"'{field}' label '{key}' must map to a non-empty string", field, key=key)
    return dict(mapping)


def _check_region(region: str, zones: Tuple[str, ...], name: str) -> None:
    if region not in KNOWN_AWS_REGIONS:
        pulumi.log.warn(f"Region entry '{name}': region '{region}' is not a known AWS region.")
    for zone in zones:
        if not zone.startswith(region):
            pulumi.log.warn(f"Region entry '{name}': zone '{zone}' does not belong to region '{region}'.")


def parse_region_document(
    document: Any,
    context: Optional[SourceContext] = None,
    strict_bootstrap_keys: bool = True,
) -> RegionEntry:
    """Validate one region document and build its RegionEntry.

    Raises ParseError for malformed structure and ValidationError (naming the
    offending field) when a well-formed document breaks an invariant.
    """
    if not isinstance(document, dict):
        raise ParseError(f"region document must be a mapping, got {type(document).__name__}")

    name = _require_string(document.get("name"), "name")
    description = _require_string(document.get("description", ""), "description", allow_empty=True)
    auth_ref = _require_string(document.get("auth", ""), "auth", allow_empty=True)
    if "source" in document:
        pulumi.log.warn(f"Region entry '{name}': ignoring 'source' in document; it is derived from the registration context.")

    attributes = document.get("attributes")
    if not isinstance(attributes, dict):
        raise ValidationError("'attributes' must be a mapping", "attributes")

    region = _require_string(attributes.get("region"), "region")
    zones = parse_zones(attributes.get("availability_zones"))
    image_map = parse_label_map(attributes.get("imagemap"), "imagemap")
    repo_map = parse_label_map(attributes.get("repo_map"), "repo_map", required=False)

    orphans = sorted(label for label in repo_map if label not in image_map)
    if orphans:
        if strict_bootstrap_keys:
            raise ValidationError(
                f"'repo_map' references labels with no image: {', '.join(orphans)}",
                "repo_map",
                key=orphans[0],
            )
        for label in orphans:
            pulumi.log.warn(f"Region entry '{name}': dropping bootstrap command for '{label}', no image is mapped.")
            del repo_map[label]

    service = document.get("service")
    service = _require_string(service, "service") if service is not None else region
    cookbook = document.get("cookbook")
    if cookbook is not None:
        cookbook = _require_string(cookbook, "cookbook")
    provides = parse_label_map(document.get("provides"), "provides", required=False)

    _check_region(region, zones, name)

    return RegionEntry(
        name=name,
        description=description,
        auth_ref=auth_ref,
        region=region,
        availability_zones=zones,
        image_map=image_map,
        repo_bootstrap_map=repo_map,
        source=context.source if context else None,
        service=service,
        cookbook=cookbook,
        provides=provides,
    )


def parse_region_text(
    text: str,
    context: Optional[SourceContext] = None,
    strict_bootstrap_keys: bool = True,
) -> RegionEntry:
    try:
        document = yaml.load(text, Loader=UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ParseError(f"malformed region document: {e}")
    return parse_region_document(document, context, strict_bootstrap_keys)


def load_region_file(
    path: str,
    context: Optional[SourceContext] = None,
    strict_bootstrap_keys: bool = True,
) -> RegionEntry:
    try:
        with open(path, "r", encoding="utf-8") as file:
            text = file.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"cannot read region file: {e}", path=path)
    try:
        return parse_region_text(text, context, strict_bootstrap_keys)
    except CatalogError as e:
        raise e.with_path(path) from e


def dump_region_entry(entry: RegionEntry) -> str:
    return yaml.safe_dump(entry.to_document(), sort_keys=False, default_flow_style=False)


class RegionCatalog:
    """Immutable, name-keyed snapshot of loaded region entries."""

    def __init__(self, entries: Mapping[str, RegionEntry]):
        self._entries = MappingProxyType(dict(sorted(entries.items())))

    def __getitem__(self, name: str) -> RegionEntry:
        return self._entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[RegionEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> Optional[RegionEntry]:
        return self._entries.get(name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    @property
    def regions(self) -> Tuple[str, ...]:
        return tuple(sorted({entry.region for entry in self._entries.values()}))

    def by_region(self, region: str) -> List[RegionEntry]:
        return [entry for entry in self._entries.values() if entry.region == region]


@dataclass(frozen=True)
class CatalogLoadResult:
    catalog: RegionCatalog
    failures: Tuple[LoadFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise CatalogLoadError(list(self.failures))


class RegionCatalogLoader:
    def __init__(self, settings: CatalogSettings):
        self.settings = settings

    def find_files(self, directory: str) -> List[str]:
        if not os.path.isdir(directory):
            raise CatalogError(f"catalog directory not found: {directory}")
        matches = []
        for filename in sorted(os.listdir(directory)):
            path = os.path.join(directory, filename)
            if not os.path.isfile(path):
                continue
            if any(fnmatch.fnmatch(filename, pattern) for pattern in self.settings.patterns):
                matches.append(path)
        return matches

    def load(self, directory: Optional[str] = None) -> CatalogLoadResult:
        directory = directory or self.settings.catalog_dir
        entries: Dict[str, RegionEntry] = {}
        origins: Dict[str, str] = {}
        failures: List[LoadFailure] = []

        for path in self.find_files(directory):
            try:
                entry = load_region_file(path, self.settings.context, self.settings.strict_bootstrap_keys)
                if entry.name in entries:
                    raise ValidationError(
                        f"duplicate region entry name '{entry.name}' (already loaded from {origins[entry.name]})",
                        "name",
                        key=entry.name,
                        path=path,
                    )
            except CatalogError as e:
                if self.settings.fail_fast:
                    raise
                pulumi.log.error(f"Failed to load region file: {e}")
                failures.append(LoadFailure(path, e))
                continue
            entries[entry.name] = entry
            origins[entry.name] = path
            pulumi.log.info(f"Loaded region entry '{entry.name}' ({entry.region}) from {path}")

        catalog = RegionCatalog(entries)
        pulumi.log.info(f"Published region catalog with {len(catalog)} entries, {len(failures)} failure(s)")
        return CatalogLoadResult(catalog, tuple(failures))
