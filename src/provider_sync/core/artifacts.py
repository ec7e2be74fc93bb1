"""Locations and content builders for the files kept in sync in a TaskMaster project."""

import copy
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import PatchError
from .patcher import (
    append_json_element,
    dump_json_document,
    ensure_object_entry,
    find_json_block,
    find_json_object,
    find_object_block,
    has_object_block,
    json_element_values,
    object_entry_value,
    remove_entry_at,
    remove_json_member,
    remove_object_entry,
    replace_json_span,
    set_json_member,
)


STUB_DIR = "src/ai-providers"
INDEX_PATH = f"{STUB_DIR}/index.js"
UNIFIED_REGISTRY_PATH = "scripts/modules/ai-services-unified.js"
CONFIG_MANAGER_PATH = "scripts/modules/config-manager.js"
CATALOG_PATH = "scripts/modules/supported-models.json"
SECRETS_PATH = ".cursor/mcp.json"
PROJECT_CONFIG_PATH = ".taskmaster/config.json"

SERVER_ALIASES = ("taskmaster-ai", "task-master-ai")
SERVER_SKELETON = {"command": "node", "args": ["dist/index.js"], "env": {}}

MODEL_MAP_BLOCK = "modelMap"
ROLE_NAMES = ("main", "research", "fallback")


class ArtifactKind(str, Enum):
    """The five kinds of synchronized artifacts."""
    STUB = "stub"
    INDEX = "index"
    REGISTRY = "registry"
    CATALOG = "catalog"
    SECRETS = "secrets"


CRITICAL_KINDS = frozenset({
    ArtifactKind.STUB,
    ArtifactKind.INDEX,
    ArtifactKind.REGISTRY,
    ArtifactKind.CATALOG,
})


@dataclass(frozen=True)
class RegistryFile:
    """A registry source and which of its blocks must exist."""

    path: str
    requires_imports: bool
    requires_providers: bool
    requires_key_map: bool = True


REGISTRY_FILES = (
    RegistryFile(UNIFIED_REGISTRY_PATH, requires_imports=True, requires_providers=True),
    RegistryFile(CONFIG_MANAGER_PATH, requires_imports=False, requires_providers=False),
)


def stub_path(provider_key: str) -> str:
    """Project-relative path of a provider's generated stub."""
    return f"{STUB_DIR}/{provider_key}.js"


def class_name(provider_key: str) -> str:
    """Class exported by a provider's stub."""
    return f"{provider_key[:1].upper()}{provider_key[1:]}Provider"


def env_var_name(provider_key: str) -> str:
    """Secrets-manifest variable for a provider's API key."""
    return f"{provider_key.upper()}_API_KEY"


def prefixed_model_id(provider_key: str, model_id: str) -> str:
    """Catalog id of a model: ``<providerKey>-<modelId>`` unless already prefixed."""
    prefix = f"{provider_key}-"
    return model_id if model_id.startswith(prefix) else prefix + model_id


def js_string(value: str) -> str:
    """Single-quoted JavaScript string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n")
    return f"'{escaped}'"


def parse_js_string(source: Optional[str]) -> Optional[str]:
    """Value of a quoted JavaScript string literal, or None for anything else."""
    if not source or len(source) < 2 or source[0] not in "'\"" or source[-1] != source[0]:
        return None
    return re.sub(r"\\(.)", lambda m: "\n" if m.group(1) == "n" else m.group(1), source[1:-1])


def api_base_url(provider_key: str, endpoint: Optional[str]) -> str:
    """Base URL baked into a stub, always ending in ``/v1``."""
    base = (endpoint or "").strip().rstrip("/") or f"https://api.{provider_key}.com/v1"
    return base if base.endswith("/v1") else f"{base}/v1"


_STUB_TEMPLATE = """/**
 * {key}.js
 * AI provider implementation for {name} using an OpenAI-compatible API.
 */

import {{ createOpenAI }} from '@ai-sdk/openai';
import {{ BaseAIProvider }} from './base-provider.js';

export class {class_name} extends BaseAIProvider {{
    constructor() {{
        super();
        this.name = {js_name};
    }}

    /**
     * Creates and returns a {name} client instance.
     * @param {{object}} params - Parameters for client initialization
     * @param {{string}} params.apiKey - {name} API key
     * @param {{string}} [params.baseURL] - Optional custom API endpoint
     * @returns {{Function}} {name} client function
     */
    getClient(params) {{
        try {{
            const {{ apiKey, baseURL }} = params;

            if (!apiKey) {{
                throw new Error({js_missing_key});
            }}

            return createOpenAI({{
                apiKey,
                baseURL: baseURL || {js_base_url}
            }});
        }} catch (error) {{
            this.handleError('client initialization', error);
        }}
    }}

    /**
     * Maps catalog model IDs to the names the API expects.
     * @param {{string}} modelId - The model ID from supported-models.json
     * @returns {{string}} The model name to send to the API
     */
    mapModelId(modelId) {{
        const modelMap = {{}};

        return modelMap[modelId] || modelId;
    }}

    async generateText(params) {{
        return super.generateText({{ ...params, modelId: this.mapModelId(params.modelId) }});
    }}

    async streamText(params) {{
        return super.streamText({{ ...params, modelId: this.mapModelId(params.modelId) }});
    }}

    async generateObject(params) {{
        return super.generateObject({{ ...params, modelId: this.mapModelId(params.modelId) }});
    }}
}}
"""


def render_stub(
    provider_key: str,
    display_name: str,
    endpoint: Optional[str] = None,
    model_map: Optional[Dict[str, str]] = None
) -> str:
    """Generate a provider stub.

    Args:
        provider_key: Provider key, used for the file and class names
        display_name: Name shown in messages raised by the stub
        endpoint: Provider API endpoint; ``https://api.<key>.com/v1`` if empty
        model_map: Catalog id to API model name entries for ``modelMap``

    Returns:
        JavaScript source of the stub
    """
    source = _STUB_TEMPLATE.format(
        key=provider_key,
        name=display_name,
        class_name=class_name(provider_key),
        js_name=js_string(display_name),
        js_missing_key=js_string(f"{display_name} API key is required."),
        js_base_url=js_string(api_base_url(provider_key, endpoint)),
    )
    for catalog_id, api_model in (model_map or {}).items():
        source = add_model_mapping(source, catalog_id, api_model)
    return source


def read_model_map(stub_source: str) -> Dict[str, str]:
    """The ``modelMap`` entries of a stub, in source order."""
    block = find_object_block(stub_source, MODEL_MAP_BLOCK)
    mapping = {}
    for key in block.keys():
        value = parse_js_string(object_entry_value(stub_source, MODEL_MAP_BLOCK, key))
        if value is not None:
            mapping[key] = value
    return mapping


def add_model_mapping(stub_source: str, catalog_id: str, api_model: str) -> str:
    """Record ``catalog_id -> api_model`` in the stub's ``modelMap``."""
    text, _ = ensure_object_entry(stub_source, MODEL_MAP_BLOCK, catalog_id, js_string(api_model))
    return text


def remove_model_mapping(stub_source: str, catalog_id: str) -> str:
    """Drop ``catalog_id`` from the stub's ``modelMap``."""
    text, _ = remove_object_entry(stub_source, MODEL_MAP_BLOCK, catalog_id)
    return text


_JS_LITERAL = r"""('(?:[^'\\\n]|\\.)*'|"(?:[^"\\\n]|\\.)*")"""
_STUB_NAME = re.compile(r"this\.name\s*=\s*" + _JS_LITERAL)
_STUB_BASE_URL = re.compile(r"baseURL:\s*baseURL\s*\|\|\s*" + _JS_LITERAL)


def read_stub_details(stub_source: str) -> Dict[str, Any]:
    """Display name, base URL and ``modelMap`` recorded in a stub.

    Pieces the stub does not carry are left out, so the result can be used
    directly as a provider override for :meth:`ConfigTransformer.to_internal`.
    """
    details: Dict[str, Any] = {}
    for name, pattern in (("name", _STUB_NAME), ("endpoint", _STUB_BASE_URL)):
        match = pattern.search(stub_source)
        value = parse_js_string(match.group(1)) if match else None
        if value:
            details[name] = value
    if has_object_block(stub_source, MODEL_MAP_BLOCK):
        details["modelMap"] = read_model_map(stub_source)
    return details


@dataclass
class JsonDocument:
    """A parsed JSON object file."""

    data: Dict[str, Any]
    existed: bool = True


def load_json_document(
    text: Optional[str],
    path: str,
    default: Optional[Dict[str, Any]] = None
) -> JsonDocument:
    """Parse a JSON object file; missing or blank content yields ``default``.

    Raises:
        PatchError: If the content is not a JSON object
    """
    if text is None or not text.strip():
        return JsonDocument(copy.deepcopy(default or {}), existed=text is not None)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PatchError(f"Invalid JSON: {e}", file=path)
    if not isinstance(data, dict):
        raise PatchError("Expected a JSON object at the top level", file=path)
    return JsonDocument(data)


def is_generated_json(text: Optional[str], data: Any) -> bool:
    """Whether ``text`` is exactly what the engine writes for ``data`` from scratch."""
    return text is not None and text == dump_json_document(data)


def _merge_descriptors(descriptors: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    merged: Dict[str, Dict[str, Any]] = {}
    for descriptor in descriptors:
        merged[descriptor["id"]] = descriptor
    return list(merged.values())


def _descriptor_index(values: List[Any], ids: Sequence[str]) -> Optional[int]:
    for index, value in enumerate(values):
        if isinstance(value, dict) and value.get("id") in ids:
            return index
    return None


def update_catalog_bucket(
    text: Optional[str],
    provider_key: str,
    upserts: Sequence[Dict[str, Any]] = (),
    remove_ids: Sequence[str] = ()
) -> Optional[str]:
    """Add, replace and remove model descriptors in a provider's catalog bucket.

    A missing catalog or bucket is created unless only removals were asked
    for. In an existing catalog only the bucket elements that change are
    rewritten; the rest of the file keeps its bytes.

    Raises:
        PatchError: If the catalog or the bucket has an unexpected shape
    """
    upserts = _merge_descriptors(upserts)
    creates = bool(upserts) or not remove_ids
    if text is None or not text.strip():
        return dump_json_document({provider_key: upserts}) if creates else text

    catalog = load_json_document(text, CATALOG_PATH).data
    if provider_key not in catalog:
        if not creates:
            return text
        text, _ = set_json_member(text, find_json_object(text), provider_key, upserts)
        return text
    if not isinstance(catalog[provider_key], list):
        raise PatchError(f"Catalog bucket '{provider_key}' is not a list",
                         file=CATALOG_PATH, anchor=provider_key)

    while remove_ids:
        bucket = find_json_block(text, [provider_key])
        index = _descriptor_index(json_element_values(text, bucket), remove_ids)
        if index is None:
            break
        text = remove_entry_at(text, bucket, index)

    for descriptor in upserts:
        bucket = find_json_block(text, [provider_key])
        values = json_element_values(text, bucket)
        index = _descriptor_index(values, [descriptor["id"]])
        if index is None:
            text = append_json_element(text, bucket, descriptor)
        elif values[index] != descriptor:
            entry = bucket.entries[index]
            text = replace_json_span(text, entry.start, entry.value_end, descriptor)
    return text


def remove_catalog_bucket(text: str, provider_key: str) -> str:
    """Remove a provider's bucket from the catalog text."""
    text, _ = remove_json_member(text, find_json_object(text), provider_key)
    return text


def find_server_name(manifest: Dict[str, Any], aliases: Tuple[str, ...] = SERVER_ALIASES) -> str:
    """MCP server entry holding TaskMaster's environment.

    The first alias present in ``mcpServers`` wins; otherwise the first alias.
    """
    servers = manifest.get("mcpServers") or {}
    for alias in aliases:
        if alias in servers:
            return alias
    return aliases[0]


def read_secrets(
    manifest: Dict[str, Any],
    aliases: Tuple[str, ...] = SERVER_ALIASES
) -> Dict[str, str]:
    """String variables of the TaskMaster server's ``env`` in the manifest."""
    servers = manifest.get("mcpServers")
    server = servers.get(find_server_name(manifest, aliases)) if isinstance(servers, dict) else None
    env = server.get("env") if isinstance(server, dict) else None
    if not isinstance(env, dict):
        return {}
    return {name: value for name, value in env.items() if isinstance(value, str)}


def set_secret(
    text: Optional[str],
    name: str,
    value: str,
    aliases: Tuple[str, ...] = SERVER_ALIASES
) -> str:
    """Store ``name=value`` in the TaskMaster server's ``env``.

    A missing manifest is created from scratch. Otherwise the innermost
    missing level (``mcpServers``, the server entry or its ``env``) is
    inserted, or the variable itself is set, and nothing else changes.

    Raises:
        PatchError: If the manifest or one of those levels is malformed
    """
    manifest = load_json_document(text, SECRETS_PATH).data
    server_name = find_server_name(manifest, aliases)
    server_entry = dict(copy.deepcopy(SERVER_SKELETON), env={name: value})
    if text is None or not text.strip():
        return dump_json_document({"mcpServers": {server_name: server_entry}})

    path: List[str] = []
    levels = (("mcpServers", {server_name: server_entry}),
              (server_name, server_entry),
              ("env", {name: value}))
    node: Any = manifest
    for key, created in levels:
        if node.get(key) is None:
            block = find_json_block(text, path)
            text, _ = set_json_member(text, block, key, created)
            return text
        node = node[key]
        path.append(key)
        if not isinstance(node, dict):
            raise PatchError(f"'{key}' must be an object", file=SECRETS_PATH, anchor=key)

    text, _ = set_json_member(text, find_json_block(text, path), name, value)
    return text


def remove_secret(
    text: Optional[str],
    name: str,
    aliases: Tuple[str, ...] = SERVER_ALIASES
) -> Optional[str]:
    """Remove ``name`` from every known server's ``env``.

    A server entry left identical to the generated skeleton is removed too.
    """
    manifest = load_json_document(text, SECRETS_PATH).data
    servers = manifest.get("mcpServers")
    if not isinstance(servers, dict):
        return text

    for alias in aliases:
        server = servers.get(alias)
        env = server.get("env") if isinstance(server, dict) else None
        if not isinstance(env, dict) or name not in env:
            continue
        text, _ = remove_json_member(text, find_json_block(text, ["mcpServers", alias, "env"]),
                                     name)
        del env[name]
        if server == SERVER_SKELETON:
            text, _ = remove_json_member(text, find_json_block(text, ["mcpServers"]), alias)
    return text


def is_default_manifest(manifest: Dict[str, Any]) -> bool:
    """Whether a manifest carries nothing beyond an empty ``mcpServers``."""
    return manifest == {"mcpServers": {}} or manifest == {}


def roles_using(project_config: Dict[str, Any], provider_key: str) -> List[str]:
    """Roles in ``.taskmaster/config.json`` assigned to ``provider_key``."""
    models = project_config.get("models") if isinstance(project_config, dict) else None
    if not isinstance(models, dict):
        return []
    return [
        role for role in ROLE_NAMES
        if isinstance(models.get(role), dict) and models[role].get("provider") == provider_key
    ]
