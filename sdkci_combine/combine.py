"""
Combine multiple OpenAPI documents into a single document.

Input files are selected with comma-separated glob patterns. Before joining,
operationIds that appear in more than one document are prefixed with a slug
derived from the document's title, and each document's servers are handled
according to a ServerUrlStrategy.
"""

import copy
import glob
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse

import yaml

from sdkci_common.errors import CombineError

logger = logging.getLogger(__name__)

HTTP_METHODS: tuple[str, ...] = (
    "get",
    "post",
    "put",
    "delete",
    "patch",
    "options",
    "head",
)

Spec = dict[str, Any]


@dataclass
class FindFilesResult:
    """Files matched by a set of patterns."""

    files: list[str]
    empty_patterns: list[str]  # Patterns that matched zero files


@dataclass
class CombineResult:
    """The combined document and its path counts before and after joining."""

    spec: Spec
    path_count_before: int
    path_count_after: int


@dataclass
class ServerUrlStrategy:
    """
    How server URLs of the input documents are handled.

    ``global_url`` is the server of the combined document. Documents whose
    servers include one of the ``preserve`` URLs keep that server on each
    operation, and their paths are disambiguated with a ``base`` query
    parameter.
    """

    global_url: str | None = None
    preserve: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerUrlStrategy":
        return cls(
            global_url=data.get("global"),
            preserve=list(data.get("preserve") or []),
        )


class _NoAliasDumper(yaml.SafeDumper):
    def ignore_aliases(self, data: Any) -> bool:
        return True


class SpecLoader(yaml.SafeLoader):
    """
    SafeLoader resolving plain scalars like the YAML 1.2 core schema.

    Dates stay strings and only true/false are booleans, so values such as
    ``version: 2024-01-01`` or ``enum: [NO, on]`` load as written.
    """


SpecLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag not in ("tag:yaml.org,2002:bool", "tag:yaml.org,2002:timestamp")
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
SpecLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def load_yaml(text: Any) -> Any:
    """Parse YAML text or a stream with SpecLoader."""
    return yaml.load(text, Loader=SpecLoader)


def find_files(patterns: str) -> FindFilesResult:
    """
    Find files matching comma-separated glob patterns or direct paths.

    Returns absolute paths, de-duplicated in match order, along with the
    patterns that matched nothing.
    """
    files: list[str] = []
    empty_patterns: list[str] = []

    for pattern in (p.strip() for p in patterns.split(",")):
        if not pattern:
            continue
        matches = sorted(glob.glob(pattern, recursive=True))
        if not matches:
            empty_patterns.append(pattern)
            continue
        for match in matches:
            path = os.path.abspath(match)
            if path not in files:
                files.append(path)

    return FindFilesResult(files=files, empty_patterns=empty_patterns)


def load_spec(file_path: str) -> Spec:
    """Load an OpenAPI document from a JSON or YAML file."""
    with open(file_path, encoding="utf-8") as f:
        if file_path.endswith(".json"):
            return json.load(f)
        return load_yaml(f) or {}


def dump_spec(spec: Spec, as_json: bool) -> str:
    """Serialize a document as JSON or YAML."""
    if as_json:
        return json.dumps(spec, indent=2) + "\n"
    return yaml.dump(
        spec,
        Dumper=_NoAliasDumper,
        sort_keys=False,
        allow_unicode=True,
        width=float("inf"),
    )


def save_spec(spec: Spec, file_path: str) -> None:
    """Save a document as JSON or YAML depending on the file extension."""
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    content = dump_spec(spec, as_json=file_path.endswith(".json"))
    with open(file_path, "w", encoding="utf-8") as f:
        f.write(content)


def count_paths(spec: Spec) -> int:
    return len(spec.get("paths") or {})


def add_base_to_path(path_key: str, base_url: str) -> str:
    """
    Add a ``base`` query parameter to a path to disambiguate collisions.

    The base is the server's host plus its path without trailing slashes,
    e.g. ``/health`` with ``https://api.example.com/svc/`` becomes
    ``/health?base=api.example.com%2Fsvc``.
    """
    url = urlparse(base_url)
    url_path = url.path.rstrip("/")
    base = f"{url.hostname}{url_path}" if url_path else url.hostname
    pathname, _, query = path_key.partition("?")
    params = dict(parse_qsl(query, keep_blank_values=True))
    params["base"] = base
    return f"{pathname}?{urlencode(params)}"


def slugify(text: str) -> str:
    """Convert text to a URL-friendly slug."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def derive_slugs(specs: list[Spec]) -> list[str]:
    """
    Derive one unique slug per document from its ``info.title``.

    Documents without a title get ``spec-{index}``. When several documents
    share a slug they are numbered ``-0``, ``-1``, ... in order.
    """
    raw_slugs = []
    for index, spec in enumerate(specs):
        title = (spec.get("info") or {}).get("title")
        if isinstance(title, str) and title:
            raw_slugs.append(slugify(title))
        else:
            raw_slugs.append(f"spec-{index}")

    counts: dict[str, int] = {}
    for slug in raw_slugs:
        counts[slug] = counts.get(slug, 0) + 1

    seen: dict[str, int] = {}
    result = []
    for slug in raw_slugs:
        if counts[slug] == 1:
            result.append(slug)
            continue
        occurrence = seen.get(slug, 0)
        seen[slug] = occurrence + 1
        result.append(f"{slug}-{occurrence}")
    return result


def _operations(spec: Spec):
    for path_item in (spec.get("paths") or {}).values():
        if not isinstance(path_item, dict):
            continue
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if isinstance(operation, dict):
                yield operation


def find_conflicting_operation_ids(specs: list[Spec]) -> set[str]:
    """Return the operationIds that appear more than once across documents."""
    seen: dict[str, int] = {}
    for spec in specs:
        for operation in _operations(spec):
            operation_id = operation.get("operationId")
            if isinstance(operation_id, str) and operation_id:
                seen[operation_id] = seen.get(operation_id, 0) + 1
    return {operation_id for operation_id, count in seen.items() if count > 1}


def deduplicate_operation_ids(spec: Spec, slug: str, conflicting: set[str]) -> Spec:
    """Return a copy of the document with conflicting operationIds prefixed."""
    cloned = copy.deepcopy(spec)
    for operation in _operations(cloned):
        if operation.get("operationId") in conflicting:
            operation["operationId"] = f"{slug}_{operation['operationId']}"
    return cloned


def process_spec_for_servers(spec: Spec, strategy: ServerUrlStrategy) -> Spec:
    """
    Apply a server strategy to one document.

    If one of the document's servers is preserved, every path gets a ``base``
    query parameter, operations without their own servers get the
    document's servers, and the top-level servers are removed. Otherwise the
    top-level servers are kept only when they include the global URL.
    """
    processed = copy.deepcopy(spec)
    servers = processed.get("servers") or []
    if not servers:
        return processed

    preserved_url = next(
        (server["url"] for server in servers if server.get("url") in strategy.preserve),
        None,
    )

    if preserved_url:
        paths = {}
        for path_key, path_item in (processed.get("paths") or {}).items():
            for method in HTTP_METHODS:
                operation = path_item.get(method)
                if isinstance(operation, dict) and "servers" not in operation:
                    operation["servers"] = copy.deepcopy(servers)
            paths[add_base_to_path(path_key, preserved_url)] = path_item
        processed["paths"] = paths
        del processed["servers"]
        return processed

    has_global = strategy.global_url and any(
        server.get("url") == strategy.global_url for server in servers
    )
    if not has_global:
        del processed["servers"]
    return processed


def _rewrite_refs(node: Any, renames: dict[str, str]) -> Any:
    """Rewrite ``$ref`` pointers according to a mapping of old to new refs."""
    if isinstance(node, dict):
        return {
            key: renames.get(value, value)
            if key == "$ref" and isinstance(value, str)
            else _rewrite_refs(value, renames)
            for key, value in node.items()
        }
    if isinstance(node, list):
        return [_rewrite_refs(item, renames) for item in node]
    return node


def _prefix_with_slug(spec: Spec, slug: str) -> Spec:
    """Prefix every component name and tag of a document with its slug."""
    renames: dict[str, str] = {}
    components: dict[str, Any] = {}
    for section, entries in (spec.get("components") or {}).items():
        if not isinstance(entries, dict):
            components[section] = entries
            continue
        components[section] = {}
        for name, value in entries.items():
            new_name = f"{slug}_{name}"
            renames[f"#/components/{section}/{name}"] = f"#/components/{section}/{new_name}"
            components[section][new_name] = value

    prefixed = _rewrite_refs({**spec, "components": components}, renames)
    if not components:
        del prefixed["components"]

    if prefixed.get("tags"):
        prefixed["tags"] = [
            {**tag, "name": f"{slug}_{tag['name']}"} for tag in prefixed["tags"]
        ]
    for operation in _operations(prefixed):
        if operation.get("tags"):
            operation["tags"] = [f"{slug}_{tag}" for tag in operation["tags"]]
    return prefixed


def join_specs(
    specs: list[Spec], slugs: list[str] | None = None, prefix_with_info: bool = False
) -> Spec:
    """
    Join several documents into one.

    The first document supplies ``openapi``, ``info`` and any other top-level
    fields. Paths are merged per method, keeping the first definition of a
    method. Components are merged per section: identical entries are kept
    once, and a differing entry with the same name replaces the earlier one
    with a warning. With ``prefix_with_info`` every document's components and
    tags are prefixed with its slug first, so nothing collides. Tags are
    merged by name. The first document's servers (if any remain) are kept.

    Raises:
        CombineError: If there is nothing to join
    """
    if not specs:
        raise CombineError("No files to combine")

    slugs = slugs or derive_slugs(specs)
    if prefix_with_info:
        specs = [_prefix_with_slug(spec, slug) for spec, slug in zip(specs, slugs)]

    joined = {
        key: copy.deepcopy(value)
        for key, value in specs[0].items()
        if key not in ("paths", "components", "tags", "servers")
    }
    paths: dict[str, Any] = {}
    components: dict[str, dict[str, Any]] = {}
    tags: list[dict[str, Any]] = []
    servers = None

    for spec, slug in zip(specs, slugs):
        if servers is None and spec.get("servers"):
            servers = copy.deepcopy(spec["servers"])

        for path_key, path_item in (spec.get("paths") or {}).items():
            if path_key not in paths:
                paths[path_key] = copy.deepcopy(path_item)
                continue
            existing = paths[path_key]
            for key, value in path_item.items():
                if key not in existing:
                    existing[key] = copy.deepcopy(value)
                elif key in HTTP_METHODS and existing[key] != value:
                    logger.warning(
                        f"Duplicate operation {key.upper()} {path_key} in {slug}; "
                        f"keeping the first definition"
                    )

        for section, entries in (spec.get("components") or {}).items():
            merged = components.setdefault(section, {})
            for name, value in (entries or {}).items():
                if name in merged and merged[name] != value:
                    logger.warning(
                        f"Component {section}/{name} from {slug} conflicts with "
                        f"an earlier definition and replaces it"
                    )
                merged[name] = copy.deepcopy(value)

        known_tags = {tag.get("name") for tag in tags}
        for tag in spec.get("tags") or []:
            if tag.get("name") not in known_tags:
                tags.append(copy.deepcopy(tag))
                known_tags.add(tag.get("name"))

    if servers:
        joined["servers"] = servers
    if tags:
        joined["tags"] = tags
    joined["paths"] = paths
    if components:
        joined["components"] = components
    return joined


def _no_files_error(empty_patterns: list[str]) -> CombineError:
    listed = "\n".join(f"  - {pattern}" for pattern in empty_patterns)
    return CombineError(
        "No files found matching input patterns.\n\n"
        f"Patterns that matched nothing:\n{listed}\n\n"
        "Make sure:\n"
        "  1. You have checked out the repository using actions/checkout@v4\n"
        "  2. The file paths are correct relative to the repository root\n"
        "  3. The files exist in your repository"
    )


def combine_openapi_specs(
    input_patterns: str,
    output_path: str,
    server_strategy: ServerUrlStrategy | None = None,
    prefix_with_info: bool = False,
) -> CombineResult:
    """
    Combine the documents matched by ``input_patterns`` into ``output_path``.

    Args:
        input_patterns: Comma-separated glob patterns or file paths
        output_path: Output file; ``.json`` writes JSON, anything else YAML
        server_strategy: How to handle the documents' servers
        prefix_with_info: Prefix components and tags with the document slug

    Returns:
        The combined document with path counts before and after joining

    Raises:
        CombineError: If no pattern matched any file
    """
    found = find_files(input_patterns)
    for pattern in found.empty_patterns:
        logger.warning(f"No files matched: {pattern}")
    if not found.files:
        raise _no_files_error(found.empty_patterns)

    logger.info(f"Found {len(found.files)} file(s) to combine")
    for file in found.files:
        logger.debug(f"  - {file}")

    specs = [load_spec(file) for file in found.files]
    path_count_before = sum(count_paths(spec) for spec in specs)
    slugs = derive_slugs(specs)

    conflicting = find_conflicting_operation_ids(specs)
    if conflicting:
        logger.info(
            f"Found {len(conflicting)} conflicting operationId(s): "
            f"{', '.join(sorted(conflicting))}"
        )
        specs = [
            deduplicate_operation_ids(spec, slug, conflicting)
            for spec, slug in zip(specs, slugs)
        ]

    if server_strategy:
        specs = [process_spec_for_servers(spec, server_strategy) for spec in specs]

    if len(specs) == 1:
        combined = specs[0]
    else:
        combined = join_specs(specs, slugs, prefix_with_info=prefix_with_info)

    if server_strategy and server_strategy.global_url and not combined.get("servers"):
        combined["servers"] = [{"url": server_strategy.global_url}]

    save_spec(combined, output_path)

    path_count_after = count_paths(combined)
    if path_count_after != path_count_before:
        logger.warning(
            f"Path count changed while combining: {path_count_before} before, "
            f"{path_count_after} after"
        )

    return CombineResult(
        spec=combined,
        path_count_before=path_count_before,
        path_count_after=path_count_after,
    )
