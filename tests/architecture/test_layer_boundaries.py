"""
Layer boundary contract.

1. asset_kernel/** may NOT import asset_config or asset_services.
2. asset_config/** may NOT import asset_services.
3. asset_kernel/domain/** is pure: no SQLAlchemy, no YAML, no I/O modules.
4. Only asset_services commits or rolls back sessions.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if any(module == p or module.startswith(f"{p}.") for p in forbidden):
                found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestNoUpwardDependencies:
    def test_kernel_does_not_import_config_or_services(self):
        violations = _violations("asset_kernel", ("asset_config", "asset_services"))
        assert not violations, "Kernel boundary violation:\n" + "\n".join(violations)

    def test_config_does_not_import_services(self):
        violations = _violations("asset_config", ("asset_services",))
        assert not violations, "Config boundary violation:\n" + "\n".join(violations)


class TestPureDomain:
    FORBIDDEN = ("sqlalchemy", "yaml", "os", "pathlib", "logging", "asset_kernel.models")

    def test_domain_has_no_infrastructure_imports(self):
        violations = _violations("asset_kernel/domain", self.FORBIDDEN)
        assert not violations, "Impure domain module:\n" + "\n".join(violations)


class TestTransactionOwnership:
    def test_kernel_services_never_commit(self):
        offenders = []
        for path in _python_files("asset_kernel/services"):
            tree = ast.parse(path.read_text(), filename=str(path))
            for node in ast.walk(tree):
                if (
                    isinstance(node, ast.Call)
                    and isinstance(node.func, ast.Attribute)
                    and node.func.attr in ("commit", "rollback")
                    and not (
                        isinstance(node.func.value, ast.Name)
                        and node.func.value.id == "savepoint"
                    )
                ):
                    offenders.append(f"  {path.relative_to(ROOT)}:{node.lineno}")
        assert not offenders, "Kernel service owns a transaction:\n" + "\n".join(offenders)
