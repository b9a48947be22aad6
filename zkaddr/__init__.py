"""
ZKADDR: Zero-Knowledge Address Protocol

Lets a holder prove facts about a physical address (it is registered, it is
well-formed, it lies in an allowed country or region, it replaced an older
address, it is a locker at some facility) without disclosing the address,
and gates the final PID-to-address resolution behind owner policies and an
audit trail.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │  SERVICES                                                               │
    │    resolution.py  Access policies, tokens, hash-chained audit log       │
    │    shipping.py    Shipping-validation seam, shipment tokens             │
    │    revocation.py  Signed, versioned revocation lists                    │
    │                                                                         │
    │  PROOFS                                                                 │
    │    patterns.py    Five proof patterns and the ProofEngine facade        │
    │    zkp.py         MPC-in-the-head proving system, circuit registry      │
    │    circuit.py     Arithmetic circuits and gadgets over Fr               │
    │    workers.py     CPU worker pool with deployment timeout               │
    │                                                                         │
    │  IDENTITY AND STATE                                                     │
    │    credentials.py Address credentials, DID documents, holder keys       │
    │    vc.py          did:key Ed25519 signatures over canonical JSON        │
    │    merkle.py      Incremental Merkle trees, registry with root window   │
    │    field.py       BN254 scalar field, MiMC-7 hash, commitments          │
    │    pid.py         PID codec and per-country schema table               │
    │                                                                         │
    │  AMBIENT                                                                │
    │    config.py  observability.py  errors.py  hardening.py  core.py        │
    │    schema.py  cli.py                                                    │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fail Closed: an unsigned or tampered revocation list confirms nothing.
    Resolution without an audit entry does not happen.

    No Address Leaves Through Logs: errors and log records carry codes and
    public identifiers only.

    Injected State: the Merkle and revocation registries are services owned
    by the caller and passed in, never module globals.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy import of the public API on first access."""

    if name in ("PIDCodec", "PIDComponents", "PIDValidation", "encode", "decode", "validate"):
        from zkaddr import pid
        return getattr(pid, name)

    if name in ("MiMC", "commit", "verify_commitment", "FIELD_MODULUS"):
        from zkaddr import field
        return getattr(field, name)

    if name in ("MerkleTree", "MerkleRegistry", "MerklePath", "RootSnapshot"):
        from zkaddr import merkle
        return getattr(merkle, name)

    if name in ("CredentialIssuer", "AddressCredential", "HolderKey", "AddressOpening",
                "AddressProvider", "ProviderDirectory", "create_did_document",
                "check_credential", "verify_credential"):
        from zkaddr import credentials
        return getattr(credentials, name)

    if name in ("SigningKey",):
        from zkaddr import vc
        return getattr(vc, name)

    if name in ("ProofEngine", "ProofType", "PatternVerification", "proof_from_dict",
                "MembershipPublicInputs", "StructurePublicInputs", "SelectiveRevealPublicInputs",
                "VersionPublicInputs", "LockerPublicInputs"):
        from zkaddr import patterns
        return getattr(patterns, name)

    if name in ("MpcProofSystem", "CircuitRegistry", "ArithmeticCircuit"):
        from zkaddr import zkp
        return getattr(zkp, name)

    if name in ("RevocationRegistry", "RevocationEntry", "RevocationList", "SignedRevocationList",
                "create_entry", "create_list", "sign", "verify_list", "is_revoked", "get_successor",
                "latest_successor"):
        from zkaddr import revocation
        return getattr(revocation, name)

    if name in ("ResolutionService", "ResolutionRequest", "ResolutionResponse", "AccessPolicy",
                "AccessAction", "PolicyStore", "TokenAuthority", "AuditLog", "AddressStore",
                "validate_policy"):
        from zkaddr import resolution
        return getattr(resolution, name)

    if name in ("ShippingProvider", "ShippingRequester", "ShippingConditions",
                "ShippingValidationRequest", "ShippingValidationResponse", "ShipmentToken",
                "sign_shipping_request"):
        from zkaddr import shipping
        return getattr(shipping, name)

    if name in ("ProofWorkerPool",):
        from zkaddr import workers
        return getattr(workers, name)

    if name in ("get_config", "get_config_manager"):
        from zkaddr import config
        return getattr(config, name)

    raise AttributeError(f"module 'zkaddr' has no attribute {name!r}")
