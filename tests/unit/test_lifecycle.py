from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from stack_deployer.errors import ConfigurationError, ResolutionError
from stack_deployer.variables.labels import (
    ENCODE_LABEL,
    HASH_LABEL,
    IGNORE_LABEL,
    NAME_LABEL,
    STACK_LABEL,
    VERSION_LABEL,
)
from stack_deployer.variables.lifecycle import (
    GENERATED_SUFFIX,
    GeneratedFiles,
    environment_variants,
    hash_content,
    resolve_variable,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from stack_deployer.config.settings import Settings


def _sha(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


def _generated(tmp_path: Path) -> list[Path]:
    return sorted(tmp_path.glob(f"*{GENERATED_SUFFIX}"))


class TestHashing:
    def test_hash_trims_whitespace(self) -> None:
        assert hash_content("  root\n") == _sha("root")

    @pytest.mark.parametrize("content", ["root", "", "multi\nline", "ünïcode", " padded "])
    def test_hash_matches_trimmed_sha256(
        self, make_settings: Callable[..., Settings], content: str
    ) -> None:
        resolved = resolve_variable("v", {"content": content}, make_settings())
        assert resolved.hash == _sha(content.strip())


class TestInlineContent:
    def test_name_and_identity_labels(self, make_settings: Callable[..., Settings]) -> None:
        resolved = resolve_variable("db_user", {"content": "root"}, make_settings())

        assert resolved.name == f"demo-db_user-{_sha('root')[:7]}"
        assert resolved.labels == {
            NAME_LABEL: "db_user",
            HASH_LABEL: _sha("root"),
            STACK_LABEL: "demo",
            VERSION_LABEL: "1.0.0",
        }

    def test_resolution_is_stable(self, make_settings: Callable[..., Settings]) -> None:
        settings = make_settings()
        first = resolve_variable("db_user", {"content": "root"}, settings)
        second = resolve_variable("db_user", {"content": "root"}, settings)

        assert first.name == second.name
        assert first.file != second.file

    def test_one_byte_change_changes_name(self, make_settings: Callable[..., Settings]) -> None:
        settings = make_settings()
        a = resolve_variable("v", {"content": "root"}, settings)
        b = resolve_variable("v", {"content": "roof"}, settings)
        assert a.name != b.name

    def test_surrounding_whitespace_does_not_change_name(
        self, make_settings: Callable[..., Settings]
    ) -> None:
        settings = make_settings()
        a = resolve_variable("v", {"content": "root"}, settings)
        b = resolve_variable("v", {"content": "root\n"}, settings)
        assert a.name == b.name

    def test_materialized_file(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        resolved = resolve_variable("token", {"content": "abc"}, make_settings())

        (path,) = _generated(tmp_path)
        assert path.name.startswith("token.")
        assert path.read_text() == "abc"
        assert resolved.file == path.as_posix()
        assert resolved.generated_file == path
        assert resolved.generated

    def test_declaration_rewritten_to_file_only(
        self, make_settings: Callable[..., Settings]
    ) -> None:
        spec = resolve_variable("v", {"content": "x"}, make_settings()).declaration.to_spec()
        assert set(spec) == {"name", "file", "labels"}

    def test_content_is_interpolated(self, make_settings: Callable[..., Settings]) -> None:
        settings = make_settings(variables={"USER": "admin"})
        resolved = resolve_variable("v", {"content": "user=${USER}"}, settings)
        assert resolved.hash == _sha("user=admin")

    def test_explicit_name_used_as_base(self, make_settings: Callable[..., Settings]) -> None:
        resolved = resolve_variable("v", {"name": "custom", "content": "x"}, make_settings())
        assert resolved.name == f"custom-{_sha('x')[:7]}"

    def test_empty_content_warns(
        self, make_settings: Callable[..., Settings], caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("WARNING", logger="stack_deployer"):
            resolve_variable("v", {"content": ""}, make_settings())
        assert "empty value" in caplog.text

    def test_reserved_labels_win(self, make_settings: Callable[..., Settings]) -> None:
        decl = {"content": "x", "labels": {STACK_LABEL: "other", "team": "core"}}
        resolved = resolve_variable("v", decl, make_settings())
        assert resolved.labels[STACK_LABEL] == "demo"
        assert resolved.labels["team"] == "core"


class TestFileSource:
    def test_file_is_not_copied(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "cert.pem").write_text("CERT")
        resolved = resolve_variable("cert", {"file": "cert.pem"}, make_settings())

        assert resolved.file == "cert.pem"
        assert resolved.hash == _sha("CERT")
        assert not resolved.generated
        assert _generated(tmp_path) == []

    def test_file_content_is_not_interpolated(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "conf").write_text("${USER}")
        settings = make_settings(variables={"USER": "admin"})
        assert resolve_variable("c", {"file": "conf"}, settings).hash == _sha("${USER}")

    def test_line_endings_change_the_hash(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        cert = tmp_path / "cert.pem"
        cert.write_bytes(b"line1\r\nline2")
        crlf = resolve_variable("cert", {"file": "cert.pem"}, make_settings())
        cert.write_bytes(b"line1\nline2")
        lf = resolve_variable("cert", {"file": "cert.pem"}, make_settings())

        assert crlf.hash == _sha("line1\r\nline2")
        assert crlf.hash != lf.hash
        assert crlf.name != lf.name

    def test_binary_file(self, make_settings: Callable[..., Settings], tmp_path: Path) -> None:
        raw = b"\x30\x82\xff\xfe\x00\x01"
        (tmp_path / "keystore.p12").write_bytes(raw)

        resolved = resolve_variable("keystore", {"file": "keystore.p12"}, make_settings())

        lossy = raw.decode("utf-8", errors="replace")
        assert resolved.hash == hashlib.sha256(lossy.strip().encode()).hexdigest()
        assert resolved.file == "keystore.p12"
        assert not resolved.generated

    def test_missing_file_is_fatal_when_strict(
        self, make_settings: Callable[..., Settings]
    ) -> None:
        settings = make_settings(variables={"CERT": "x"})
        with pytest.raises(ResolutionError, match="does not exist"):
            resolve_variable("cert", {"file": "missing.pem"}, settings)

    def test_missing_file_falls_back_when_lenient(
        self, make_settings: Callable[..., Settings]
    ) -> None:
        settings = make_settings(strict_variables=False, variables={"CERT": "from-env"})
        resolved = resolve_variable("cert", {"file": "missing.pem"}, settings)
        assert resolved.hash == _sha("from-env")
        assert resolved.generated


class TestEnvironmentSource:
    def test_value_used_verbatim(self, make_settings: Callable[..., Settings]) -> None:
        settings = make_settings(variables={"DB_PASS": "p@ss${X}", "X": "no"})
        resolved = resolve_variable("db", {"environment": "DB_PASS"}, settings)
        assert resolved.hash == _sha("p@ss${X}")

    def test_missing_is_always_fatal(self, make_settings: Callable[..., Settings]) -> None:
        settings = make_settings(strict_variables=False)
        with pytest.raises(ResolutionError, match="DB_PASS"):
            resolve_variable("db", {"environment": "DB_PASS"}, settings)


class TestInference:
    def test_secret_file_preferred(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "api_key.secret").write_text("from-file")
        settings = make_settings(variables={"api_key": "from-env"})

        resolved = resolve_variable("api_key", None, settings)

        assert resolved.hash == _sha("from-file")
        assert resolved.file == (tmp_path / "api_key.secret").as_posix()
        assert not resolved.generated

    def test_secret_file_keeps_crlf(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "api_key.secret").write_bytes(b"a\r\nb")
        resolved = resolve_variable("api_key", None, make_settings())
        assert resolved.hash == _sha("a\r\nb")

    def test_variants_in_order(self) -> None:
        assert environment_variants("api-key", prefix="DEPLOYMENT", stack="demo") == [
            "api_key",
            "API_KEY",
            "DEPLOYMENT_api_key",
            "DEPLOYMENT_API_KEY",
            "demo_api_key",
            "DEMO_API_KEY",
        ]

    @pytest.mark.parametrize(
        ("variables", "expected"),
        [
            ({"api_key": "1", "API_KEY": "2"}, "1"),
            ({"API_KEY": "2", "DEPLOYMENT_api_key": "3"}, "2"),
            ({"DEPLOYMENT_API_KEY": "4", "demo_api_key": "5"}, "4"),
            ({"DEMO_API_KEY": "6"}, "6"),
        ],
    )
    def test_first_variant_wins(
        self,
        make_settings: Callable[..., Settings],
        variables: dict[str, str],
        expected: str,
    ) -> None:
        resolved = resolve_variable("api-key", {}, make_settings(variables=variables))
        assert resolved.hash == _sha(expected)

    def test_no_source_names_variants(self, make_settings: Callable[..., Settings]) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_variable("api_key", {}, make_settings())
        message = str(exc_info.value)
        assert "API_KEY" in message
        assert "api_key.secret" in message


class TestDirectives:
    def test_ignored_declaration_unchanged(self, make_settings: Callable[..., Settings]) -> None:
        decl = {"external": True, "labels": {IGNORE_LABEL: "true"}}
        resolved = resolve_variable("ext", decl, make_settings())

        assert resolved.hash is None
        assert resolved.declaration.to_spec() == decl

    def test_encoding_materializes_file_source(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "raw").write_text("hi")
        decl = {"file": "raw", "labels": {ENCODE_LABEL: "hex"}}

        resolved = resolve_variable("v", decl, make_settings())

        assert resolved.hash == _sha("6869")
        assert resolved.generated
        assert ENCODE_LABEL not in resolved.labels

    def test_unknown_encoding_is_fatal(self, make_settings: Callable[..., Settings]) -> None:
        decl = {"content": "x", "labels": {ENCODE_LABEL: "rot13"}}
        with pytest.raises(ConfigurationError, match="rot13"):
            resolve_variable("v", decl, make_settings())


class TestGeneratedFiles:
    def test_removes_only_tracked_files(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "keep.secret").write_text("x")
        foreign = tmp_path / f"other-run{GENERATED_SUFFIX}"
        foreign.write_text("y")
        generated = GeneratedFiles()
        generated.track(resolve_variable("a", {"content": "1"}, make_settings()))
        generated.track(resolve_variable("b", {"content": "2"}, make_settings()))

        removed = generated.cleanup()

        assert len(removed) == 2
        assert _generated(tmp_path) == [foreign]
        assert (tmp_path / "keep.secret").exists()

    def test_file_backed_variables_not_tracked(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        (tmp_path / "db.secret").write_text("pw")
        generated = GeneratedFiles()

        generated.track(resolve_variable("db", None, make_settings()))

        assert generated.paths == []
        assert generated.cleanup() == []
        assert (tmp_path / "db.secret").exists()

    def test_context_manager_cleans_up_on_error(
        self, make_settings: Callable[..., Settings], tmp_path: Path
    ) -> None:
        with pytest.raises(RuntimeError), GeneratedFiles() as generated:
            generated.track(resolve_variable("a", {"content": "1"}, make_settings()))
            raise RuntimeError("deploy failed")

        assert _generated(tmp_path) == []
