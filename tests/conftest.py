"""Shared fixtures: a minimal TaskMaster project tree and editor records."""

import json
import sys
import os
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from provider_sync.config.schema import CostPer1M, Model, Provider


UNIFIED_SOURCE = """import { generateText } from 'ai';
import {
\tAnthropicAIProvider,
\tOpenAIProvider
} from '../../src/ai-providers/index.js';

// Provider instances
const PROVIDERS = {
\tanthropic: new AnthropicAIProvider(),
\topenai: new OpenAIProvider()
};

function _resolveApiKey(providerName) {
\tconst keyMap = {
\t\topenai: 'OPENAI_API_KEY',
\t\tanthropic: 'ANTHROPIC_API_KEY',
\t};
\treturn process.env[keyMap[providerName]];
}
"""

CONFIG_MANAGER_SOURCE = """function isApiKeySet(providerName) {
    const keyMap = {
        openai: 'OPENAI_API_KEY', // OpenAI
        anthropic: 'ANTHROPIC_API_KEY'
    };
    return Boolean(process.env[keyMap[providerName]]);
}
"""

INDEX_SOURCE = (
    "export { AnthropicAIProvider } from './anthropic.js';\n"
    "export { OpenAIProvider } from './openai.js';\n"
)

CATALOG = {
    "openai": [
        {
            "id": "gpt-4o",
            "swe_score": 0.332,
            "cost_per_1m_tokens": {"input": 2.5, "output": 10},
            "allowed_roles": ["main", "fallback"],
            "max_tokens": 16384
        }
    ]
}

MANIFEST = {
    "mcpServers": {
        "task-master-ai": {
            "command": "npx",
            "args": ["-y", "task-master-ai"],
            "env": {"OPENAI_API_KEY": "openai-test-value"}
        }
    }
}

PROJECT_CONFIG = {
    "models": {
        "main": {"provider": "anthropic", "modelId": "claude-3-7-sonnet-20250219"},
        "research": {"provider": "perplexity", "modelId": "sonar-pro"},
        "fallback": {"provider": "foapi", "modelId": "foapi-gpt-4o"}
    }
}


def write_project(root: Path) -> None:
    """Populate ``root`` with the files the engine edits."""
    files = {
        "src/ai-providers/index.js": INDEX_SOURCE,
        "scripts/modules/ai-services-unified.js": UNIFIED_SOURCE,
        "scripts/modules/config-manager.js": CONFIG_MANAGER_SOURCE,
        "scripts/modules/supported-models.json": json.dumps(CATALOG, indent=2) + "\n",
        ".cursor/mcp.json": json.dumps(MANIFEST, indent=2),
        ".taskmaster/config.json": json.dumps(PROJECT_CONFIG, indent=2),
    }
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content.encode("utf-8"))


def snapshot(root: Path) -> dict:
    """Map every file under ``root`` to its bytes."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def project_root(tmp_path):
    """A TaskMaster project with registry, catalog and manifest files."""
    root = tmp_path / "taskmaster"
    root.mkdir()
    write_project(root)
    return root


@pytest.fixture
def foapi_provider():
    """The FoApi provider record."""
    return Provider(
        id="provider_1",
        name="FoApi",
        endpoint="https://v2.voct.top",
        api_key="fo-test-value",
        type="openai",
    )


@pytest.fixture
def gpt4o_model():
    """A gpt-4o model under FoApi."""
    return Model(
        id="model_1",
        name="GPT-4o",
        provider_id="provider_1",
        model_id="gpt-4o",
        allowed_roles=["main", "fallback"],
        max_tokens=128000,
        cost_per_1m_tokens=CostPer1M(input=0.5, output=1.5),
    )
