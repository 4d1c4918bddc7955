"""
Layer boundaries.

1. mission_kernel/** may NOT import mission_config or mission_services.
   The kernel never depends upward; configuration reaches it through
   mission_config.bridges.

2. mission_config/** may NOT import mission_services.

3. mission_kernel/domain/** is pure: no SQLAlchemy, no session, no I/O
   libraries.

4. Mission.status is assigned only by the transition engine, the one
   module that opens status_write_scope().

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """(line_number, module) for every import in a file."""
    tree = ast.parse(filepath.read_text(encoding="utf-8"), filename=str(filepath))
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
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if any(module == p or module.startswith(f"{p}.") for p in forbidden):
                found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestNoUpwardDependencies:
    def test_kernel_does_not_import_config_or_services(self):
        violations = _violations("mission_kernel", ("mission_config", "mission_services"))
        assert not violations, (
            "Kernel boundary violation, mission_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )

    def test_config_does_not_import_services(self):
        violations = _violations("mission_config", ("mission_services",))
        assert not violations, "\n".join(violations)


class TestPureDomain:
    FORBIDDEN = ("sqlalchemy", "mission_kernel.db", "mission_kernel.models", "mission_kernel.services")

    def test_domain_has_no_persistence_imports(self):
        violations = _violations("mission_kernel/domain", self.FORBIDDEN)
        assert not violations, (
            "mission_kernel/domain/** must stay free of persistence:\n" + "\n".join(violations)
        )


class TestStatusWriteAuthority:
    ENGINE = ROOT / "mission_kernel" / "services" / "transition_engine.py"

    def _status_writers(self, filepath: Path) -> list[int]:
        """Line numbers of ``<name>.status = ...`` where <name> looks like a mission."""
        tree = ast.parse(filepath.read_text(encoding="utf-8"))
        lines = []
        for node in ast.walk(tree):
            if not isinstance(node, ast.Assign):
                continue
            for target in node.targets:
                if (
                    isinstance(target, ast.Attribute)
                    and target.attr == "status"
                    and isinstance(target.value, ast.Name)
                    and "mission" in target.value.id
                ):
                    lines.append(node.lineno)
        return lines

    def test_only_the_engine_writes_mission_status(self):
        offenders = []
        for package in ("mission_kernel", "mission_config", "mission_services", "scripts"):
            for filepath in _python_files(package):
                if filepath == self.ENGINE:
                    continue
                offenders.extend(
                    f"  {filepath.relative_to(ROOT)}:{line}" for line in self._status_writers(filepath)
                )
        assert not offenders, "Mission.status assigned outside the engine:\n" + "\n".join(offenders)

    def test_engine_is_the_only_status_write_scope_user(self):
        users = [
            filepath.relative_to(ROOT)
            for package in ("mission_kernel", "mission_config", "mission_services", "scripts")
            for filepath in _python_files(package)
            if "status_write_scope()" in filepath.read_text(encoding="utf-8")
            and filepath.name != "immutability.py"
        ]
        assert users == [self.ENGINE.relative_to(ROOT)]
