"""
Import-boundary enforcement for the four layers.

1. Kernel isolation    -- inventory_kernel/** may not import the engines,
                          services or config layers.
2. Domain purity       -- inventory_kernel/domain/** may not import the ORM,
                          DB drivers, models, services or selectors at
                          runtime (TYPE_CHECKING imports are allowed).
3. Engine purity       -- inventory_engines/** may not import DB drivers,
                          ORM, kernel models/db/services/selectors,
                          services or config.
4. Engine no-impure    -- inventory_engines/** may not read the wall clock
                          or the environment.
5. Config boundary     -- only inventory_services may import inventory_config,
                          besides inventory_config itself.

All scanning is done via AST; these tests are read-only.
"""

import ast
import glob
from pathlib import Path

from inventory_kernel.invariants import (
    ALL_INVENTORY_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    InventoryInvariant,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _python_files(root: str) -> list[str]:
    """Return all .py files under *root*, sorted for deterministic order."""
    return sorted(glob.glob(f"{root}/**/*.py", recursive=True))


def _is_type_checking_block(node: ast.AST) -> bool:
    if not isinstance(node, ast.If):
        return False
    test = node.test
    return (isinstance(test, ast.Name) and test.id == "TYPE_CHECKING") or (
        isinstance(test, ast.Attribute) and test.attr == "TYPE_CHECKING"
    )


def _extract_imports(filepath: str, runtime_only: bool = False) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    try:
        tree = ast.parse(Path(filepath).read_text(), filename=filepath)
    except (SyntaxError, UnicodeDecodeError):
        return []

    skipped: set[int] = set()
    if runtime_only:
        for node in ast.walk(tree):
            if _is_type_checking_block(node):
                for child in ast.walk(node):
                    skipped.add(id(child))

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if id(node) in skipped:
            continue
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    """True if *module* equals or is a child of any prefix."""
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(root: str, forbidden: tuple[str, ...], runtime_only: bool = False) -> list[str]:
    found = []
    for filepath in _python_files(root):
        for lineno, module in _extract_imports(filepath, runtime_only):
            if _matches_any(module, forbidden):
                found.append(f"  {filepath}:{lineno} imports '{module}'")
    return found


def _extract_attribute_calls(filepath: str) -> list[tuple[int, str]]:
    """Return (line_number, 'receiver.attr') for two-level attribute references."""
    tree = ast.parse(Path(filepath).read_text(), filename=filepath)
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestKernelIsolation:

    def test_kernel_has_no_upward_imports(self):
        violations = _violations("inventory_kernel", FORBIDDEN_KERNEL_IMPORTS)
        assert not violations, (
            "inventory_kernel/** must not depend on higher layers:\n"
            + "\n".join(violations)
        )


class TestDomainPurity:

    FORBIDDEN = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "inventory_kernel.models",
        "inventory_kernel.db",
        "inventory_kernel.services",
        "inventory_kernel.selectors",
    )

    def test_domain_is_pure_at_runtime(self):
        violations = _violations("inventory_kernel/domain", self.FORBIDDEN, runtime_only=True)
        assert not violations, (
            "inventory_kernel/domain/** must stay free of persistence imports:\n"
            + "\n".join(violations)
        )


class TestEnginePurity:

    FORBIDDEN = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "inventory_kernel.models",
        "inventory_kernel.db",
        "inventory_kernel.services",
        "inventory_kernel.selectors",
        "inventory_services",
        "inventory_config",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("inventory_engines", self.FORBIDDEN)
        assert not violations, (
            "inventory_engines/** must not import DB drivers, ORM, kernel "
            "persistence, services or config:\n" + "\n".join(violations)
        )


class TestEngineNoImpureFunctions:
    """Engines take time as an argument; time.monotonic is observational only."""

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_no_clock_or_environment_reads(self):
        violations = [
            f"  {filepath}:{lineno} uses {name}"
            for filepath in _python_files("inventory_engines")
            for lineno, name in _extract_attribute_calls(filepath)
            if name in self.FORBIDDEN_CALLS
        ]
        assert not violations, "\n".join(violations)


class TestConfigBoundary:

    def test_only_services_read_config(self):
        violations = _violations("inventory_engines", ("inventory_config",)) + _violations(
            "inventory_kernel", ("inventory_config",)
        )
        assert not violations, "\n".join(violations)

    def test_services_use_package_entry_point(self):
        """Services import inventory_config, never its loader module."""
        violations = _violations(
            "inventory_services", ("inventory_config.loader",)
        )
        assert not violations, "\n".join(violations)


class TestInvariantsDeclaration:

    def test_declaration_is_complete(self):
        assert ALL_INVENTORY_INVARIANTS == frozenset(InventoryInvariant)
        assert InventoryInvariant.CONSERVATION in ALL_INVENTORY_INVARIANTS
        assert InventoryInvariant.PAIR_SERIALIZATION in ALL_INVENTORY_INVARIANTS

    def test_every_invariant_names_its_enforcer(self):
        source = Path("inventory_kernel/invariants.py").read_text()
        tree = ast.parse(source)
        (enum_class,) = [
            node for node in tree.body
            if isinstance(node, ast.ClassDef) and node.name == "InventoryInvariant"
        ]
        body = enum_class.body
        undocumented = [
            stmt.targets[0].id
            for i, stmt in enumerate(body)
            if isinstance(stmt, ast.Assign)
            and not (
                i + 1 < len(body)
                and isinstance(body[i + 1], ast.Expr)
                and isinstance(body[i + 1].value, ast.Constant)
                and "Enforced" in body[i + 1].value.value
            )
        ]
        assert not undocumented, f"invariants without an enforcer: {undocumented}"
