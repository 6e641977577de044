"""Command line tests: keygen -> seal -> verify -> hash -> summary."""

import json
import os

import pytest

from conftest import SAMPLE_CONTENT, SAMPLE_SHA256, SAMPLE_SHA3_256

from truthseal.cli import EXIT_ERROR, EXIT_INVALID, EXIT_OK, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("TRUTHSEAL_"):
            monkeypatch.delenv(name)


@pytest.fixture
def workspace(tmp_path):
    draft = tmp_path / "draft.json"
    draft.write_text(json.dumps(SAMPLE_CONTENT), encoding="utf-8")
    return {
        "draft": str(draft),
        "keys": str(tmp_path / "keys"),
        "registry": str(tmp_path / "registry.json"),
        "bundle": str(tmp_path / "bundle.json"),
    }


def _keygen(ws, version="key-1", *extra):
    return main(["keygen", "--version", version, "--key-dir", ws["keys"], "--registry", ws["registry"], *extra])


def _seal(ws, *extra):
    return main(["seal", ws["draft"], "--key-dir", ws["keys"], "--registry", ws["registry"],
                 "--draft-id", "d1", "-o", ws["bundle"], *extra])


@pytest.fixture
def sealed_bundle(workspace, capsys):
    assert _keygen(workspace) == EXIT_OK
    assert _seal(workspace) == EXIT_OK
    capsys.readouterr()
    return workspace


class TestKeygen:

    def test_creates_key_and_registry(self, workspace, capsys):
        assert _keygen(workspace) == EXIT_OK
        material = json.loads(capsys.readouterr().out)
        assert material["version"] == "key-1"
        assert material["curve"] == "P-256"
        assert os.path.exists(os.path.join(workspace["keys"], "key-1.pem"))
        registry = json.loads(open(workspace["registry"], encoding="utf-8").read())
        assert "key-1" in json.dumps(registry)

    def test_duplicate_version(self, workspace, capsys):
        _keygen(workspace)
        assert _keygen(workspace) == EXIT_ERROR
        assert "already registered" in capsys.readouterr().err

    def test_unknown_curve(self, workspace, capsys):
        assert _keygen(workspace, "key-1", "--curve", "P-999") == EXIT_ERROR

    def test_password_from_env(self, workspace, monkeypatch):
        monkeypatch.setenv("SEAL_KEY_PASSWORD", "s3cret")
        assert _keygen(workspace, "key-1", "--password-env", "SEAL_KEY_PASSWORD") == EXIT_OK

        assert _seal(workspace) == EXIT_ERROR
        monkeypatch.setenv("TRUTHSEAL_KEY_PASSWORD", "s3cret")
        assert _seal(workspace) == EXIT_OK

    def test_empty_password_env(self, workspace):
        assert _keygen(workspace, "key-1", "--password-env", "UNSET_PASSWORD_VARIABLE") == EXIT_ERROR


class TestSeal:

    def test_writes_bundle(self, sealed_bundle):
        bundle = json.loads(open(sealed_bundle["bundle"], encoding="utf-8").read())
        assert bundle["contentHash"] == SAMPLE_SHA256
        assert bundle["publicKeyVersion"] == "key-1"
        assert bundle["publicKey"]["version"] == "key-1"

    def test_prints_bundle_without_output(self, workspace, capsys):
        _keygen(workspace)
        capsys.readouterr()
        assert main(["seal", workspace["draft"], "--key-dir", workspace["keys"],
                     "--registry", workspace["registry"], "-s", "v2"]) == EXIT_OK
        bundle = json.loads(capsys.readouterr().out)
        assert bundle["contentHash"] == SAMPLE_SHA3_256

    def test_without_keys(self, workspace, capsys):
        assert _seal(workspace) == EXIT_ERROR
        assert "error:" in capsys.readouterr().err

    def test_invalid_draft(self, workspace, tmp_path, capsys):
        _keygen(workspace)
        draft = tmp_path / "bad.json"
        draft.write_text(json.dumps(dict(SAMPLE_CONTENT, title="")), encoding="utf-8")
        workspace["draft"] = str(draft)
        assert _seal(workspace) == EXIT_ERROR


class TestVerify:

    def test_valid_bundle(self, sealed_bundle, capsys):
        assert main(["verify", sealed_bundle["bundle"], "--trusted-keys", sealed_bundle["registry"]]) == EXIT_OK
        out = capsys.readouterr().out
        assert out.startswith("✓ Record verified")

    def test_json_output(self, sealed_bundle, capsys):
        code = main(["verify", sealed_bundle["bundle"], "-k", sealed_bundle["registry"], "--json"])
        assert code == EXIT_OK
        verdict = json.loads(capsys.readouterr().out)
        assert verdict["isValid"] is True
        assert verdict["timestampValid"] is None

    def test_embedded_key(self, sealed_bundle):
        assert main(["verify", sealed_bundle["bundle"], "--trust-embedded-key"]) == EXIT_OK

    def test_no_trusted_keys(self, sealed_bundle, capsys):
        assert main(["verify", sealed_bundle["bundle"]]) == EXIT_INVALID
        captured = capsys.readouterr()
        assert "no trusted keys" in captured.err
        assert captured.out.startswith("✗")

    def test_tampered_bundle(self, sealed_bundle, capsys):
        path = sealed_bundle["bundle"]
        bundle = json.loads(open(path, encoding="utf-8").read())
        bundle["content"] = "hello?"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(bundle, f)

        assert main(["verify", path, "-k", sealed_bundle["registry"]]) == EXIT_INVALID
        assert "CONTENT_HASH_MISMATCH" in capsys.readouterr().err

    def test_missing_bundle(self, workspace, capsys):
        assert main(["verify", workspace["bundle"]]) == EXIT_ERROR

    def test_deeply_nested_bundle(self, workspace, capsys):
        with open(workspace["bundle"], "w", encoding="utf-8") as f:
            f.write("[" * 100000 + "]" * 100000)
        assert main(["verify", workspace["bundle"]]) == EXIT_ERROR
        assert "not valid JSON" in capsys.readouterr().err

    def test_deeply_nested_summary_input(self, workspace, capsys):
        with open(workspace["bundle"], "w", encoding="utf-8") as f:
            f.write("{\"a\": " + "[" * 100000 + "]" * 100000 + "}")
        assert main(["summary", workspace["bundle"]]) == EXIT_ERROR

    def test_missing_registry(self, sealed_bundle, tmp_path):
        assert main(["verify", sealed_bundle["bundle"], "-k", str(tmp_path / "absent.json")]) == EXIT_ERROR


class TestHashAndSummary:

    def test_hash_draft(self, workspace, capsys):
        assert main(["hash", workspace["draft"]]) == EXIT_OK
        assert capsys.readouterr().out.strip() == f"sha256: {SAMPLE_SHA256}"

    def test_hash_draft_v2(self, workspace, capsys):
        assert main(["hash", workspace["draft"], "-s", "v2"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == f"sha3-256: {SAMPLE_SHA3_256}"

    def test_hash_bundle_uses_sealable_fields(self, sealed_bundle, capsys):
        assert main(["hash", sealed_bundle["bundle"]]) == EXIT_OK
        assert capsys.readouterr().out.strip() == f"sha256: {SAMPLE_SHA256}"

    def test_hash_invalid_content(self, tmp_path):
        path = tmp_path / "content.json"
        path.write_text(json.dumps({"id": "r1"}), encoding="utf-8")
        assert main(["hash", str(path)]) == EXIT_ERROR

    def test_summary(self, sealed_bundle, capsys):
        assert main(["summary", sealed_bundle["bundle"]]) == EXIT_OK
        assert capsys.readouterr().out.startswith("r1 v1 (v1/key-1) | T | sealed ")


class TestMain:

    def test_no_command(self, capsys):
        assert main([]) == EXIT_ERROR

    def test_invalid_environment(self, workspace, monkeypatch, capsys):
        monkeypatch.setenv("TRUTHSEAL_SEALING_VERSION", "v9")
        assert main(["hash", workspace["draft"]]) == EXIT_ERROR
        assert "Unsupported sealing version" in capsys.readouterr().err
