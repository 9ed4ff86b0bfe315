"""Pytest configuration and fixtures for codecontext tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List, Optional, Sequence

import pytest

from codecontext.models import CodeEntity, Parameter, RankedResult, estimate_tokens


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Point the config file at an empty temp location for every test.

    Also clears provider keys so nothing ever reaches a real embedding API.
    """
    monkeypatch.setattr("codecontext.config.BASE_DIR", tmp_path / ".codecontext")
    monkeypatch.setattr("codecontext.config.CONFIG_FILE", tmp_path / ".codecontext" / "config.toml")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("VOYAGE_API_KEY", raising=False)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def ts_parser():
    """A TreeSitterParser, skipping the test when the grammar is missing."""
    pytest.importorskip("tree_sitter")
    pytest.importorskip("tree_sitter_typescript")
    from codecontext.parser import TreeSitterParser

    return TreeSitterParser()


@pytest.fixture
def make_entity() -> Callable[..., CodeEntity]:
    """Factory for hand-built entities (no parser needed)."""

    def _make(
        name: str,
        kind: str = "function",
        calls: Sequence[str] = (),
        file: str = "src/app.ts",
        line: int = 1,
        source: Optional[str] = None,
        doc: Optional[str] = None,
        tokens: Optional[int] = None,
        signature: Optional[str] = None,
        parameters: Sequence[Parameter] = (),
    ) -> CodeEntity:
        bare = name.rsplit(".", 1)[-1]
        if source is None:
            body = "\n".join(f"  {c}();" for c in calls)
            source = f"function {bare}() {{\n{body}\n}}"
        return CodeEntity(
            id=CodeEntity.make_id(file, name, line),
            name=name,
            kind=kind,
            file=file,
            start_line=line,
            end_line=line + source.count("\n"),
            source=source,
            signature=signature if signature is not None else f"{bare}()",
            doc=doc,
            token_estimate=tokens if tokens is not None else estimate_tokens(source),
            calls=list(calls),
            parameters=list(parameters),
        )

    return _make


@pytest.fixture
def auth_entities(make_entity) -> List[CodeEntity]:
    """A small authentication module: handler -> authenticate -> validateToken -> parseJWT."""
    return [
        make_entity(
            "authenticate", calls=["validateToken", "findUser"], line=1,
            doc="Authenticate a user with username and password",
        ),
        make_entity("validateToken", calls=["parseJWT"], line=10, doc="Validate a session token"),
        make_entity("parseJWT", line=20),
        make_entity("loginHandler", calls=["authenticate"], line=30, file="src/routes.ts"),
        make_entity("findUser", calls=["query"], line=1, file="src/db.ts"),
        make_entity("query", line=10, file="src/db.ts"),
        make_entity("get", line=40, file="src/routes.ts"),
        make_entity("fetchUsers", calls=["get"], line=50, file="src/routes.ts"),
        make_entity("User", kind="interface", line=20, file="src/db.ts",
                    source="interface User {\n  id: string;\n}"),
    ]


@pytest.fixture
def ranked_factory() -> Callable[..., RankedResult]:
    def _make(entity: CodeEntity, score: float = 1.0, match_type: str = "semantic") -> RankedResult:
        return RankedResult(entity=entity, score=score, reason="test", match_type=match_type)

    return _make
