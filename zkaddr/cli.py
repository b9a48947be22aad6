#!/usr/bin/env python3
"""
ZKADDR Command Line

Usage:
    zkaddr <command> [subcommand] [options]

Commands:
    pid          Encode, decode and validate place identifiers
    keys         Generate Ed25519 did:key identities
    did          DID documents
    credential   Issue and verify address credentials
    proof        Inspect and verify proof documents
    revocation   Verify signed revocation lists
    config       Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from zkaddr import __version__
from zkaddr.errors import ProtocolError
from zkaddr.observability import generate_correlation_id, set_correlation_id
from zkaddr.pid import SEGMENT_LEVELS


class OutputFormat(Enum):
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _load_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise CLIError(f"Cannot read {path}: {e.strerror}", exit_code=2) from e
    except json.JSONDecodeError as e:
        raise CLIError(f"{path} is not valid JSON: {e.msg}", exit_code=2) from e


def _load_key(path: str):
    from zkaddr.vc import SigningKey

    try:
        return SigningKey.from_jwk(_load_json(path))
    except ValueError as e:
        raise CLIError(f"{path}: {e}", exit_code=2) from e


class ZkAddrCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="zkaddr",
            description="Zero-knowledge address protocol tools",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument("--version", "-V", action="version", version=f"zkaddr {__version__}")
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument("--quiet", "-q", action="store_true", help="Suppress error output")
        self.parser.add_argument("--config", "-c", help="Configuration YAML (default: zkaddr.yaml if present)")

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_pid_commands()
        self._register_keys_commands()
        self._register_did_commands()
        self._register_credential_commands()
        self._register_proof_commands()
        self._register_revocation_commands()
        self._register_config_commands()

    def _register_pid_commands(self) -> None:
        pid = self.subparsers.add_parser("pid", help="Place identifier operations")
        pid_sub = pid.add_subparsers(dest="subcommand")

        encode = pid_sub.add_parser("encode", help="Encode components into a PID")
        for level in SEGMENT_LEVELS:
            encode.add_argument(f"--{level}", required=(level == "country"), help=f"{level} token")

        decode = pid_sub.add_parser("decode", help="Decode a PID into components")
        decode.add_argument("pid")

        validate = pid_sub.add_parser("validate", help="Validate a PID")
        validate.add_argument("pid")

    def _register_keys_commands(self) -> None:
        keys = self.subparsers.add_parser("keys", help="Key management")
        keys_sub = keys.add_subparsers(dest="subcommand")

        generate = keys_sub.add_parser("generate", help="Generate an Ed25519 did:key (private JWK)")
        generate.add_argument("--kid", default="key-1", help="Key id fragment")
        generate.add_argument("--out", "-o", help="Write the JWK to this file")

    def _register_did_commands(self) -> None:
        did = self.subparsers.add_parser("did", help="DID documents")
        did_sub = did.add_subparsers(dest="subcommand")

        document = did_sub.add_parser("document", help="DID document for a key")
        document.add_argument("--key", "-k", required=True, help="Private JWK file")

    def _register_credential_commands(self) -> None:
        credential = self.subparsers.add_parser("credential", help="Address credentials")
        credential_sub = credential.add_subparsers(dest="subcommand")

        issue = credential_sub.add_parser("issue", help="Issue a credential")
        issue.add_argument("--key", "-k", required=True, help="Issuer private JWK file")
        issue.add_argument("--subject", "-s", required=True, help="Holder DID")
        issue.add_argument("--pid", "-p", required=True, help="Address PID")

        verify = credential_sub.add_parser("verify", help="Verify a credential")
        verify.add_argument("path", help="Credential JSON file")
        verify.add_argument("--issuer", help="Expected issuer did:key")

    def _register_proof_commands(self) -> None:
        proof = self.subparsers.add_parser("proof", help="Proof documents")
        proof_sub = proof.add_subparsers(dest="subcommand")

        inspect = proof_sub.add_parser("inspect", help="Show a proof's type, circuit and blob shape")
        inspect.add_argument("path", help="Proof JSON file")

        verify = proof_sub.add_parser("verify", help="Verify a proof offline")
        verify.add_argument("path", help="Proof JSON file")
        verify.add_argument("--revocation-list", help="Signed revocation list (version proofs)")
        verify.add_argument("--issuer", help="Trusted issuer of credentials and revocation lists")
        verify.add_argument("--credential", action="append", default=[],
                            help="Anchoring credential JSON file (repeat for old and new)")
        verify.add_argument("--root", help="Published Merkle root (membership and locker proofs)")

    def _register_revocation_commands(self) -> None:
        revocation = self.subparsers.add_parser("revocation", help="Revocation lists")
        revocation_sub = revocation.add_subparsers(dest="subcommand")

        verify = revocation_sub.add_parser("verify", help="Verify a signed revocation list")
        verify.add_argument("path", help="Signed list JSON file")
        verify.add_argument("--issuer", help="Expected issuer did:key")

        check = revocation_sub.add_parser("check", help="Look up a PID in a signed list")
        check.add_argument("path", help="Signed list JSON file")
        check.add_argument("pid")
        check.add_argument("--issuer", help="Expected issuer did:key")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., proof.repetitions)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        set_correlation_id(generate_correlation_id())
        try:
            self._load_config(parsed.config)
            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, OutputFormat(parsed.format)))
            return 0
        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code
        except ProtocolError as e:
            if not parsed.quiet:
                print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            return 1

    def _load_config(self, path: Optional[str]) -> None:
        from zkaddr.config import ConfigError, get_config_manager
        manager = get_config_manager()
        try:
            if path:
                manager.load_from_file(path)
            else:
                manager.load_defaults()
        except ConfigError as e:
            raise CLIError(str(e), exit_code=2) from e

    def _dispatch(self, args: argparse.Namespace) -> Any:
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)
        handler = getattr(self, f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}", None)
        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)
        return handler(args)

    # PID handlers
    def _handle_pid_encode(self, args: argparse.Namespace) -> Any:
        from zkaddr.pid import encode
        components = {level: getattr(args, level) for level in SEGMENT_LEVELS if getattr(args, level)}
        return {"pid": encode(components)}

    def _handle_pid_decode(self, args: argparse.Namespace) -> Any:
        from zkaddr.pid import decode
        return decode(args.pid).to_dict()

    def _handle_pid_validate(self, args: argparse.Namespace) -> Any:
        from zkaddr.pid import validate
        result = validate(args.pid)
        if not result.valid:
            raise CLIError(result.reason or "Invalid PID")
        return result.to_dict()

    # Key handlers
    def _handle_keys_generate(self, args: argparse.Namespace) -> Any:
        from zkaddr.vc import SigningKey
        key = SigningKey.generate(args.kid)
        jwk = key.to_jwk(include_private=True)
        if args.out:
            Path(args.out).write_text(json.dumps(jwk, indent=2) + "\n", encoding="utf-8")
            return {"did": key.did, "verificationMethod": key.verification_method, "path": args.out}
        return {"did": key.did, "verificationMethod": key.verification_method, "jwk": jwk}

    def _handle_did_document(self, args: argparse.Namespace) -> Any:
        from zkaddr.credentials import create_did_document
        return create_did_document(_load_key(args.key))

    # Credential handlers
    def _handle_credential_issue(self, args: argparse.Namespace) -> Any:
        from zkaddr.credentials import CredentialIssuer
        try:
            return CredentialIssuer(_load_key(args.key)).issue(args.subject, args.pid).to_dict()
        except ValueError as e:
            raise CLIError(str(e), exit_code=2) from e

    def _handle_credential_verify(self, args: argparse.Namespace) -> Any:
        from zkaddr.credentials import check_credential
        from zkaddr.vc import public_key_from_did_key
        try:
            issuer_key = public_key_from_did_key(args.issuer) if args.issuer else None
        except ValueError as e:
            raise CLIError(f"--issuer: {e}", exit_code=2) from e
        credential = check_credential(_load_json(args.path), issuer_public_key=issuer_key)
        return {
            "valid": True,
            "issuer": credential.issuer,
            "subject": credential.subject,
            "countryCode": credential.country_code,
        }

    # Proof handlers
    def _handle_proof_inspect(self, args: argparse.Namespace) -> Any:
        from zkaddr.patterns import proof_from_dict
        from zkaddr.zkp import ProofBlob
        proof = proof_from_dict(_load_json(args.path))
        try:
            blob: Dict[str, Any] = ProofBlob.decode(proof.blob).summary()
        except ValueError as e:
            blob = {"error": str(e)}
        blob["bytes"] = len(proof.blob)
        return {
            "proofType": proof.proof_type.value,
            "circuitId": proof.circuit_id,
            "publicInputs": proof.public_inputs.to_dict(),
            "blob": blob,
        }

    def _handle_proof_verify(self, args: argparse.Namespace) -> Any:
        from zkaddr.patterns import ProofEngine, proof_from_dict
        from zkaddr.revocation import SignedRevocationList
        from zkaddr.field import from_hex
        proof = proof_from_dict(_load_json(args.path))
        signed = None
        if args.revocation_list:
            if not args.issuer:
                raise CLIError("--revocation-list needs --issuer", exit_code=2)
            signed = SignedRevocationList.from_dict(_load_json(args.revocation_list))
        roots = {}
        if args.root:
            universe = getattr(proof.public_inputs, "universe", None)
            if universe is None:
                raise CLIError("--root only applies to membership and locker proofs", exit_code=2)
            try:
                roots[universe] = from_hex(args.root)
            except ValueError as e:
                raise CLIError(f"--root: {e}", exit_code=2) from e
        credentials = [_load_json(path) for path in args.credential]
        engine = ProofEngine(issuer=args.issuer, published_roots=roots)
        verdict = engine.verify(proof, credentials=credentials, revocation_list=signed)
        if not verdict.valid:
            raise CLIError(f"Proof rejected: {verdict.reason}")
        return verdict.to_dict()

    # Revocation handlers
    def _handle_revocation_verify(self, args: argparse.Namespace) -> Any:
        from zkaddr.revocation import verify_list
        return verify_list(_load_json(args.path), args.issuer).to_dict()

    def _handle_revocation_check(self, args: argparse.Namespace) -> Any:
        from zkaddr.revocation import get_successor, is_revoked, latest_successor
        signed = _load_json(args.path)
        revoked = is_revoked(args.pid, signed, args.issuer)
        return {
            "pid": args.pid,
            "revoked": revoked,
            "successor": get_successor(args.pid, signed, args.issuer),
            "latestSuccessor": latest_successor(args.pid, signed, args.issuer) if revoked else None,
        }

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from zkaddr.config import ConfigError, get_config_manager
        try:
            return {"path": args.path, "value": get_config_manager().get(args.path)}
        except ConfigError as e:
            raise CLIError(str(e), exit_code=2) from e

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from zkaddr.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from zkaddr.config import get_config_manager
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from zkaddr.config import get_config_manager
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    return ZkAddrCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
