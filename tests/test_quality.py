"""Code standards specific to this repository."""

import ast
import re
from pathlib import Path

import pytest


PACKAGE_DIR = Path(__file__).parent.parent / "src" / "provider_sync"
TESTS_DIR = Path(__file__).parent

LOG_METHODS = {"debug", "info", "warning", "error", "exception", "critical"}
KEY_NAMES = {"api_key", "apiKey"}


def parse(py_file):
    """Syntax tree of a source file."""
    return ast.parse(py_file.read_text(encoding="utf-8"), filename=str(py_file))


def is_logger_call(node):
    """Whether ``node`` calls a method on a structlog logger."""
    if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
        return False
    if node.func.attr not in LOG_METHODS:
        return False
    target = node.func.value
    if isinstance(target, ast.Name):
        return target.id == "logger"
    return isinstance(target, ast.Attribute) and target.attr == "logger"


def unmasked_key(node):
    """First reference to an API key in ``node`` not wrapped in ``mask_secret``."""
    if isinstance(node, ast.Call) and getattr(node.func, "id", None) == "mask_secret":
        return None
    if isinstance(node, ast.Name) and node.id in KEY_NAMES:
        return node
    if isinstance(node, ast.Attribute) and node.attr in KEY_NAMES:
        return node
    if isinstance(node, ast.Subscript) and getattr(node.slice, "value", None) in KEY_NAMES:
        return node
    for child in ast.iter_child_nodes(node):
        found = unmasked_key(child)
        if found is not None:
            return found
    return None


class TestCodeQuality:
    """Source layout and hygiene."""

    def setup_method(self):
        """Collect the package's source files."""
        self.python_files = sorted(PACKAGE_DIR.rglob("*.py"))

    def test_python_files_exist(self):
        """The package is where the tests expect it."""
        assert (PACKAGE_DIR / "core" / "sync_engine.py") in self.python_files

    def test_docstrings_present(self):
        """Public functions and classes are documented."""
        for py_file in self.python_files:
            for node in ast.walk(parse(py_file)):
                if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                    continue
                if node.name.startswith("_"):
                    continue
                if not ast.get_docstring(node):
                    pytest.fail(f"Missing docstring for '{node.name}' in {py_file}:{node.lineno}")

    def test_no_print_calls(self):
        """Output goes through the structured logger."""
        for py_file in self.python_files:
            for node in ast.walk(parse(py_file)):
                if isinstance(node, ast.Call) and getattr(node.func, "id", None) == "print":
                    pytest.fail(f"print() call in {py_file}:{node.lineno}")

    def test_no_bare_except(self):
        """Handlers name the exceptions they expect."""
        for py_file in self.python_files:
            for node in ast.walk(parse(py_file)):
                if isinstance(node, ast.ExceptHandler) and node.type is None:
                    pytest.fail(f"Bare except clause in {py_file}:{node.lineno}")

    def test_line_length(self):
        """Lines stay within 100 characters."""
        for py_file in self.python_files:
            lines = py_file.read_text(encoding="utf-8").splitlines()
            for number, line in enumerate(lines, start=1):
                if len(line) > 100:
                    pytest.fail(f"Line too long ({len(line)} chars) in {py_file}:{number}")


class TestSecretHandling:
    """API keys never reach the logs in clear text."""

    def setup_method(self):
        """Collect the package's source files."""
        self.python_files = sorted(PACKAGE_DIR.rglob("*.py"))

    def test_logged_keys_are_masked(self):
        """Log calls pass API keys through ``mask_secret``."""
        for py_file in self.python_files:
            for node in ast.walk(parse(py_file)):
                if not is_logger_call(node):
                    continue
                arguments = list(node.args) + [keyword.value for keyword in node.keywords]
                for argument in arguments:
                    found = unmasked_key(argument)
                    if found is not None:
                        pytest.fail(f"Unmasked API key logged in {py_file}:{found.lineno}")

    def test_checker_flags_unmasked_keys(self):
        """The log scan catches a clear-text key and accepts a masked one."""
        leaked = ast.parse("self.logger.info('Saved', api_key=provider.api_key)").body[0].value
        masked = ast.parse("logger.info('Saved', key=mask_secret(data['apiKey']))").body[0].value

        assert is_logger_call(leaked) and unmasked_key(leaked.keywords[0].value) is not None
        assert is_logger_call(masked) and unmasked_key(masked.keywords[0].value) is None


class TestProjectAccess:
    """Project files are only touched through directory handles."""

    def setup_method(self):
        """Load the engine and artifact sources."""
        self.core_dir = PACKAGE_DIR / "core"
        self.engine_source = (self.core_dir / "sync_engine.py").read_text(encoding="utf-8")

    def test_engine_uses_handles_for_io(self):
        """The engine never opens files or paths directly."""
        for node in ast.walk(parse(self.core_dir / "sync_engine.py")):
            if not isinstance(node, ast.Call):
                continue
            if getattr(node.func, "id", None) == "open":
                pytest.fail(f"open() call in sync_engine.py:{node.lineno}")
            if isinstance(node.func, ast.Attribute) and node.func.attr in (
                "write_text", "read_text", "remove"
            ):
                target = node.func.value
                if not (isinstance(target, ast.Name) and target.id == "handle"):
                    pytest.fail(f"File access outside a handle in sync_engine.py:{node.lineno}")

    def test_artifact_paths_are_used(self):
        """Every project path constant is edited or read somewhere in ``core``."""
        artifacts = (self.core_dir / "artifacts.py").read_text(encoding="utf-8")
        constants = re.findall(r"^([A-Z_]+_PATH) = ", artifacts, re.MULTILINE)
        assert "CATALOG_PATH" in constants and "SECRETS_PATH" in constants

        sources = "\n".join(
            path.read_text(encoding="utf-8") for path in sorted(self.core_dir.glob("*.py"))
        )
        for constant in constants:
            uses = len(re.findall(rf"\b{constant}\b", sources))
            if uses < 2:
                pytest.fail(f"{constant} is defined but never used")


class TestTestLayout:
    """Each core module has its own test module."""

    @pytest.mark.parametrize("module, test_module", [
        ("main.py", "test_main.py"),
        ("config/manager.py", "test_config_manager.py"),
        ("api_clients/network.py", "test_network_client.py"),
        ("api_clients/provider_check.py", "test_provider_check.py"),
        ("core/capability.py", "test_capability.py"),
        ("core/patcher.py", "test_patcher.py"),
        ("core/sync_engine.py", "test_sync_engine.py"),
        ("core/transformer.py", "test_transformer.py"),
        ("performance/async_optimizer.py", "test_performance.py"),
    ])
    def test_module_has_tests(self, module, test_module):
        """The module and its test file both exist."""
        assert (PACKAGE_DIR / module).exists()
        assert (TESTS_DIR / test_module).exists()
