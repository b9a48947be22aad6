"""
Tests for the zkaddr command line.
"""

import json

import pytest
import yaml

from zkaddr.cli import CLIError, OutputFormat, format_output, main
from zkaddr.merkle import PID_UNIVERSE
from zkaddr.revocation import create_entry, create_list, sign


def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def _json(out):
    return json.loads(out)


@pytest.fixture
def key_file(tmp_path, capsys):
    path = tmp_path / "issuer.jwk"
    code, out, _ = _run(capsys, "keys", "generate", "--kid", "issuer-1", "-o", str(path))
    assert code == 0
    return path, _json(out)["did"]


class TestFormatting:

    def test_formats(self):
        data = {"a": 1}
        assert json.loads(format_output(data)) == data
        assert yaml.safe_load(format_output(data, OutputFormat.YAML)) == data
        assert format_output(data, OutputFormat.TEXT) == "a: 1"

    def test_cli_error_exit_code(self):
        assert CLIError("x", exit_code=3).exit_code == 3


class TestPidCommands:

    def test_decode(self, capsys):
        code, out, _ = _run(capsys, "pid", "decode", "JP-13-113-01")
        assert code == 0
        assert _json(out) == {"country": "JP", "admin1": "13", "admin2": "113", "locality": "01"}

    def test_encode(self, capsys):
        code, out, _ = _run(capsys, "pid", "encode", "--country", "JP", "--admin1", "13")
        assert code == 0
        assert _json(out) == {"pid": "JP-13"}

    def test_validate(self, capsys):
        code, out, _ = _run(capsys, "pid", "validate", "US-CA-037")
        assert code == 0
        assert _json(out) == {"valid": True}

    def test_invalid(self, capsys):
        code, _, err = _run(capsys, "pid", "validate", "JP-1")
        assert code == 1
        assert err.startswith("Error:")

    def test_malformed_decode(self, capsys):
        code, _, err = _run(capsys, "pid", "decode", "JP-1")
        assert code == 1
        assert "MALFORMED_PID" in err

    def test_quiet(self, capsys):
        code, _, err = _run(capsys, "--quiet", "pid", "decode", "JP-1")
        assert code == 1
        assert err == ""

    def test_text_format(self, capsys):
        code, out, _ = _run(capsys, "--format", "text", "pid", "decode", "JP-13")
        assert code == 0
        assert "country: JP" in out


class TestKeysAndCredentials:

    def test_generate_to_stdout(self, capsys):
        code, out, _ = _run(capsys, "keys", "generate")
        data = _json(out)
        assert code == 0
        assert data["did"].startswith("did:key:z")
        assert data["verificationMethod"].endswith("#key-1")
        assert "d" in data["jwk"]

    def test_did_document(self, capsys, key_file):
        path, did = key_file
        code, out, _ = _run(capsys, "did", "document", "-k", str(path))
        assert code == 0
        assert _json(out)["id"] == did

    def test_issue_and_verify(self, capsys, tmp_path, key_file, holder):
        path, did = key_file
        code, out, _ = _run(capsys, "credential", "issue", "-k", str(path), "-s", holder.did, "-p", "JP-13-113-01")
        assert code == 0
        cred_path = tmp_path / "cred.json"
        cred_path.write_text(out)

        code, out, _ = _run(capsys, "credential", "verify", str(cred_path), "--issuer", did)
        assert code == 0
        assert _json(out) == {"valid": True, "issuer": did, "subject": holder.did, "countryCode": "JP"}

    def test_verify_tampered(self, capsys, tmp_path, key_file, holder):
        path, _ = key_file
        _, out, _ = _run(capsys, "credential", "issue", "-k", str(path), "-s", holder.did, "-p", "JP-13-113-01")
        doc = _json(out)
        doc["credentialSubject"]["addressPID"] = "JP-13-113-02"
        cred_path = tmp_path / "cred.json"
        cred_path.write_text(json.dumps(doc))
        code, _, err = _run(capsys, "credential", "verify", str(cred_path))
        assert code == 1
        assert "INVALID_CREDENTIAL" in err

    def test_issue_non_did_subject(self, capsys, key_file):
        path, _ = key_file
        code, _, _ = _run(capsys, "credential", "issue", "-k", str(path), "-s", "alice", "-p", "JP-13")
        assert code == 2

    def test_missing_file(self, capsys, tmp_path):
        code, _, err = _run(capsys, "did", "document", "-k", str(tmp_path / "absent.jwk"))
        assert code == 2
        assert "Cannot read" in err

    def test_not_json(self, capsys, tmp_path):
        path = tmp_path / "junk.json"
        path.write_text("{nope")
        code, _, err = _run(capsys, "credential", "verify", str(path))
        assert code == 2
        assert "not valid JSON" in err


class TestProofCommands:

    @pytest.fixture
    def proof_file(self, tmp_path, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        path = tmp_path / "proof.json"
        path.write_text(json.dumps(engine.prove_structure(opening).to_dict()))
        return path

    def test_inspect(self, capsys, proof_file):
        code, out, _ = _run(capsys, "proof", "inspect", str(proof_file))
        data = _json(out)
        assert code == 0
        assert data["proofType"] == "structure"
        assert data["blob"]["format"] == "ZKB1"
        assert data["blob"]["repetitions"] == 12

    def test_verify(self, capsys, proof_file):
        code, out, _ = _run(capsys, "proof", "verify", str(proof_file))
        assert code == 0
        assert _json(out)["valid"] is True

    def test_verify_tampered(self, capsys, proof_file):
        doc = json.loads(proof_file.read_text())
        doc["publicInputs"]["depth"] = 3
        proof_file.write_text(json.dumps(doc))
        code, _, err = _run(capsys, "proof", "verify", str(proof_file))
        assert code == 1
        assert "Proof rejected" in err

    def test_membership_needs_published_root(self, capsys, tmp_path, engine):
        for pid in ("JP-13-113-01", "JP-13-113-02"):
            engine.register_pid(pid)
        path = tmp_path / "membership.json"
        path.write_text(json.dumps(engine.prove_membership("JP-13-113-01", ["JP"]).to_dict()))

        code, _, err = _run(capsys, "proof", "verify", str(path))
        assert code == 1
        assert "No trusted root" in err

        root = engine.merkle.snapshot(PID_UNIVERSE).root_hex
        code, out, _ = _run(capsys, "proof", "verify", str(path), "--root", root)
        assert code == 0
        assert _json(out)["valid"] is True

    def test_root_for_structure_proof(self, capsys, proof_file):
        code, _, err = _run(capsys, "proof", "verify", str(proof_file), "--root", "0" * 64)
        assert code == 2
        assert "--root" in err

    def test_version_with_anchors(self, capsys, tmp_path, engine, issuer, holder, revocation):
        paths = []
        for pid in ("JP-13-113-01", "JP-27-101-03"):
            cred, _ = issuer.register_holder(holder, pid)
            path = tmp_path / f"{pid}.json"
            path.write_text(json.dumps(cred.to_dict()))
            paths.append(str(path))
        signed = revocation.revoke("JP-13-113-01", "moved", new_pid="JP-27-101-03")
        list_path = tmp_path / "revocations.json"
        list_path.write_text(json.dumps(signed.to_dict()))
        proof_path = tmp_path / "version.json"
        proof_path.write_text(json.dumps(engine.prove_version(holder, "JP-13-113-01", "JP-27-101-03").to_dict()))

        code, out, _ = _run(capsys, "proof", "verify", str(proof_path), "--revocation-list", str(list_path),
                            "--issuer", issuer.did, "--credential", paths[0], "--credential", paths[1])
        assert code == 0
        assert _json(out)["revealedData"] == {"oldPid": "JP-13-113-01", "newPid": "JP-27-101-03"}

        code, _, err = _run(capsys, "proof", "verify", str(proof_path), "--revocation-list", str(list_path),
                            "--issuer", issuer.did)
        assert code == 1
        assert "not anchored" in err

        code, _, err = _run(capsys, "proof", "verify", str(proof_path), "--revocation-list", str(list_path))
        assert code == 2
        assert "--issuer" in err


class TestRevocationCommands:

    @pytest.fixture
    def list_file(self, tmp_path, issuer_key):
        signed = sign(create_list(issuer_key.did, [create_entry("JP-13-113-01", "moved", new_pid="JP-27-101-03")]),
                      issuer_key)
        path = tmp_path / "revocations.json"
        path.write_text(json.dumps(signed.to_dict()))
        return path

    def test_verify(self, capsys, list_file, issuer_key):
        code, out, _ = _run(capsys, "revocation", "verify", str(list_file), "--issuer", issuer_key.did)
        assert code == 0
        assert _json(out)["version"] == 1

    def test_check(self, capsys, list_file):
        code, out, _ = _run(capsys, "revocation", "check", str(list_file), "JP-13-113-01")
        assert code == 0
        assert _json(out) == {
            "pid": "JP-13-113-01",
            "revoked": True,
            "successor": "JP-27-101-03",
            "latestSuccessor": "JP-27-101-03",
        }

    def test_tampered_list(self, capsys, list_file):
        doc = json.loads(list_file.read_text())
        doc["entries"] = []
        list_file.write_text(json.dumps(doc))
        code, _, err = _run(capsys, "revocation", "check", str(list_file), "JP-13-113-01")
        assert code == 1
        assert "REVOCATION_LIST_UNTRUSTED" in err


class TestConfigCommands:

    def test_get(self, capsys):
        code, out, _ = _run(capsys, "config", "get", "merkle.root_window")
        assert code == 0
        assert _json(out) == {"path": "merkle.root_window", "value": 1}

    def test_get_unknown(self, capsys):
        code, _, _ = _run(capsys, "config", "get", "merkle.nope")
        assert code == 2

    def test_show_yaml(self, capsys):
        code, out, _ = _run(capsys, "-f", "yaml", "config", "show")
        assert code == 0
        assert yaml.safe_load(out)["proof"]["repetitions"] == 12

    def test_validate(self, capsys):
        code, out, _ = _run(capsys, "config", "validate")
        assert _json(out) == {"valid": True, "errors": []}

    def test_schema(self, capsys):
        code, out, _ = _run(capsys, "config", "schema")
        assert "proof" in _json(out)["properties"]


class TestDispatch:

    def test_no_command_prints_help(self, capsys):
        code, out, _ = _run(capsys)
        assert code == 0
        assert "usage" in out

    def test_missing_subcommand(self, capsys):
        code, _, err = _run(capsys, "pid")
        assert code == 2
        assert "Unknown command" in err


class TestConfigOption:

    def test_config_file(self, capsys, tmp_path):
        path = tmp_path / "zkaddr.yaml"
        path.write_text("merkle:\n  root_window: 5\n")
        code, out, _ = _run(capsys, "--config", str(path), "config", "get", "merkle.root_window")
        assert code == 0
        assert _json(out)["value"] == 5

    def test_missing_config_file(self, capsys, tmp_path):
        code, _, err = _run(capsys, "-c", str(tmp_path / "absent.yaml"), "config", "show")
        assert code == 2
        assert "not found" in err

    def test_invalid_config_value(self, capsys, tmp_path):
        path = tmp_path / "zkaddr.yaml"
        path.write_text("merkle:\n  root_window: 0\n")
        code, _, _ = _run(capsys, "-c", str(path), "config", "show")
        assert code == 2
