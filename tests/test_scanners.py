"""Tests for the Python and TypeScript scanners and the project scan."""

import textwrap

import pytest

from aidev_cli.model_loader import ProjectConfig, ScanConfig
from aidev_cli.scanners import (
    PythonScanner,
    TypeScriptScanner,
    is_excluded,
    iter_source_files,
    relative_specifier,
    scan_project,
    scanner_for,
)


def sources(result):
    return [i.source for i in result.imports]


# ===================================================================
# Python
# ===================================================================

class TestRelativeSpecifier:
    @pytest.mark.parametrize(
        "level, module, expected",
        [
            (1, "helpers", "./helpers"),
            (1, "a.b", "./a/b"),
            (2, "pkg.mod", "../pkg/mod"),
            (3, "x", "../../x"),
            (1, None, "."),
            (2, None, ".."),
        ],
    )
    def test_specifier(self, level, module, expected):
        assert relative_specifier(level, module) == expected


class TestPythonScanner:
    """Tests for the ast based Python scanner."""

    def setup_method(self):
        self.scanner = PythonScanner()

    def test_imports(self):
        code = textwrap.dedent("""
            import os
            import numpy as np
            from typing import List
            from .helpers import fmt
            from ..core.models import User
            from . import a, b
        """)
        result = self.scanner.scan("pkg/sub/mod.py", code)

        assert sources(result) == ["os", "numpy", "typing", "./helpers", "../core/models", "./a", "./b"]
        np_import = result.imports[1]
        assert np_import.is_namespace
        assert np_import.symbols == ["np"]
        assert result.imports[3].symbols == ["fmt"]
        assert result.imports[3].line == 5

    def test_star_import(self):
        result = self.scanner.scan("pkg/mod.py", "from . import *\n")
        assert sources(result) == ["."]

    def test_exports_from_all(self):
        code = '__all__ = ["run"]\n\ndef run():\n    pass\n\ndef helper():\n    pass\n'
        assert self.scanner.scan("m.py", code).exports == ["run"]

    def test_public_top_level_exports(self):
        code = textwrap.dedent("""
            VERSION = "1"
            _private = 2

            class Service:
                pass

            async def fetch():
                pass

            def _internal():
                pass
        """)
        assert self.scanner.scan("m.py", code).exports == ["VERSION", "Service", "fetch"]

    def test_calls_and_type_references(self):
        code = textwrap.dedent("""
            def handle(request: "Request", limit: int) -> Response:
                log.info("x")
                return build(request)

            current: Session = None
        """)
        result = self.scanner.scan("m.py", code)

        assert "build" in result.calls
        assert "info" in result.calls
        assert {"Request", "int", "Response", "Session"} <= set(result.type_references)

    def test_syntax_error_returns_empty(self):
        result = self.scanner.scan("broken.py", "def oops(:\n")
        assert result.imports == []
        assert result.exports == []


# ===================================================================
# TypeScript / JavaScript
# ===================================================================

class TestTypeScriptScanner:
    """Tests for the tree-sitter scanner."""

    def setup_method(self):
        self.scanner = TypeScriptScanner()

    def test_import_forms(self):
        code = textwrap.dedent("""
            import express from 'express';
            import * as fs from "fs";
            import { login, Session } from '../auth/session';
            import './side-effect';
        """)
        result = self.scanner.scan("src/api/routes.ts", code)

        assert sources(result) == ["express", "fs", "../auth/session", "./side-effect"]
        default, namespace, named, bare = result.imports
        assert default.is_default and default.symbols == ["express"]
        assert namespace.is_namespace and namespace.symbols == ["fs"]
        assert named.symbols == ["login", "Session"]
        assert bare.symbols == []
        assert named.line == 4

    def test_exports(self):
        code = textwrap.dedent("""
            export interface Session { user: string }
            export type Id = string;
            export function login(): void {}
            export class Store {}
            export const LIMIT = 10;
            export default Store;
        """)
        result = self.scanner.scan("src/auth/session.ts", code)
        assert result.exports == ["Session", "Id", "login", "Store", "LIMIT", "default"]

    def test_re_exports_become_imports(self):
        code = "export * from './client';\nexport { query as run } from './query';\n"
        result = self.scanner.scan("src/db/index.ts", code)

        assert sources(result) == ["./client", "./query"]
        assert result.imports[0].is_namespace
        assert result.imports[1].symbols == ["run"]
        assert "run" in result.exports

    def test_require_and_dynamic_import(self):
        code = textwrap.dedent("""
            const cfg = require('./config');
            async function load() {
              const mod = await import('./lazy');
              return mod;
            }
        """)
        result = self.scanner.scan("src/app.js", code)
        assert sources(result) == ["./config", "./lazy"]
        assert all(i.is_namespace for i in result.imports)

    def test_calls_and_types(self):
        code = "function f(s: Session): User { db.query('x'); return build(s); }\n"
        result = self.scanner.scan("src/f.ts", code)

        assert "query" in result.calls
        assert "build" in result.calls
        assert {"Session", "User"} <= set(result.type_references)

    def test_tsx(self):
        code = "import React from 'react';\nexport const App = () => <div>hi</div>;\n"
        result = self.scanner.scan("src/App.tsx", code)
        assert sources(result) == ["react"]
        assert result.exports == ["App"]

    def test_syntax_errors_tolerated(self):
        result = self.scanner.scan("src/bad.ts", "import { a } from './a';\nconst = ;\n")
        assert "./a" in sources(result)


# ===================================================================
# Project scan
# ===================================================================

class TestScannerRegistry:
    def test_scanner_for(self):
        assert isinstance(scanner_for("a/b.py"), PythonScanner)
        assert isinstance(scanner_for("a/b.tsx"), TypeScriptScanner)
        assert isinstance(scanner_for("a/b.mjs"), TypeScriptScanner)
        assert scanner_for("README.md") is None

    @pytest.mark.parametrize(
        "path, patterns, expected",
        [
            ("node_modules/x/index.js", ["node_modules/"], True),
            ("packages/a/node_modules/x.js", ["node_modules/"], True),
            ("src/node_modules.ts", ["node_modules/"], False),
            ("src/gen/api.ts", ["src/gen"], True),
            ("src/a.test.ts", ["**/*.test.ts"], True),
            ("src/a.ts", ["**/*.test.ts"], False),
            ("src/a.ts", [], False),
        ],
    )
    def test_is_excluded(self, path, patterns, expected):
        assert is_excluded(path, patterns) is expected


class TestScanProject:
    def test_sample_project_edges(self, sample_project):
        config = ProjectConfig(scan=ScanConfig(exclude=["node_modules/", "dist/"]))
        scan = scan_project(sample_project, config)

        assert scan.files == [
            "src/api/routes.ts",
            "src/auth/session.ts",
            "src/db/client.ts",
            "src/db/index.ts",
            "tools/helpers.py",
            "tools/report.py",
        ]
        assert [(e.source, e.target) for e in scan.edges] == [
            ("src/api/routes.ts", "src/auth/session.ts"),
            ("src/auth/session.ts", "src/db/client.ts"),
            ("src/db/index.ts", "src/db/client.ts"),
            ("tools/report.py", "tools/helpers.py"),
        ]
        assert not scan.truncated

    def test_skip_dirs_and_excludes(self, temp_dir):
        (temp_dir / "node_modules" / "lib").mkdir(parents=True)
        (temp_dir / "node_modules" / "lib" / "index.js").write_text("export const x = 1;\n")
        (temp_dir / "generated").mkdir()
        (temp_dir / "generated" / "api.ts").write_text("export const y = 1;\n")
        (temp_dir / "main.ts").write_text("import './generated/api';\n")

        assert list(iter_source_files(temp_dir, ["generated/"])) == ["main.ts"]

    def test_max_files(self, sample_project):
        config = ProjectConfig(scan=ScanConfig(max_files=2))
        scan = scan_project(sample_project, config)

        assert scan.files == ["src/api/routes.ts", "src/auth/session.ts"]
        assert scan.truncated

    def test_without_config(self, sample_project):
        scan = scan_project(sample_project)
        assert len(scan.edges) == 4
