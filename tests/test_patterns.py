"""
Tests for the five proof patterns and the ProofEngine.

Every proof here is generated and verified by the real MPC backend with the
reduced parameters from conftest.
"""

import dataclasses

import pytest

from zkaddr.credentials import AddressProvider, CredentialIssuer, HolderKey, ProviderDirectory
from zkaddr.errors import ProofVerificationFailed, RevokedPID, StaleRoot, WitnessMismatch
from zkaddr.field import to_hex
from zkaddr.merkle import PID_UNIVERSE, MerkleRegistry
from zkaddr.patterns import (
    PATTERN_CLASSES,
    PROOF_CLASSES,
    LockerProof,
    LockerPublicInputs,
    MembershipProof,
    MembershipPublicInputs,
    MembershipWitness,
    ProofEngine,
    ProofType,
    SelectiveRevealPublicInputs,
    StructurePublicInputs,
    StructureWitness,
    VersionWitness,
    proof_from_dict,
    proof_to_dict,
)
from zkaddr.revocation import RevocationRegistry, create_entry, create_list, sign
from zkaddr.vc import SigningKey
from zkaddr.workers import ProofWorkerPool

REGISTERED = ["JP-13-113-01", "JP-13-113-02", "JP-27-101-03", "JP-01-100-01", "US-CA-037"]


@pytest.fixture
def populated(engine):
    for pid in REGISTERED:
        engine.register_pid(pid)
    return engine


class TestDispatch:
    """Proof type tables."""

    def test_every_type_has_a_pattern(self):
        assert set(PATTERN_CLASSES) == set(ProofType)
        assert set(PROOF_CLASSES) == set(ProofType)

    def test_proof_classes_carry_their_type(self):
        for proof_type, cls in PROOF_CLASSES.items():
            assert cls.proof_type is proof_type

    def test_circuit_id_names_parameters(self, engine):
        pi = MembershipPublicInputs(root=1, depth=3, allowed_countries=("JP",))
        assert engine.circuit_for(pi).circuit_id == "zkaddr.membership.v1-m7-c1-d3-r0"

    def test_circuits_are_cached(self, engine):
        pi = MembershipPublicInputs(root=1, depth=2)
        assert engine.circuit_for(pi) is engine.circuit_for(dataclasses.replace(pi, root=2))

    def test_unsupported_inputs(self, engine):
        with pytest.raises(TypeError):
            engine.circuit_for(object())


class TestMembership:
    """Registered-PID membership with optional country/region sets."""

    def test_valid_with_conditions(self, populated):
        proof = populated.prove_membership("JP-13-113-01", ["JP"], ["13", "14"])
        verdict = populated.verify(proof)
        assert verdict.valid, verdict.reason
        assert verdict.revealed_data is None

    def test_valid_without_conditions(self, populated):
        proof = populated.prove_membership("US-CA-037")
        assert populated.verify(proof).valid

    def test_condition_not_met(self, populated):
        """A prover cannot claim a country outside the allowed set."""
        with pytest.raises(WitnessMismatch):
            populated.prove_membership("US-CA-037", ["JP"])

    def test_region_not_met(self, populated):
        with pytest.raises(WitnessMismatch):
            populated.prove_membership("JP-27-101-03", ["JP"], ["13"])

    def test_unregistered(self, populated):
        with pytest.raises(LookupError):
            populated.prove_membership("JP-13-113-99")

    def test_no_pid_in_proof(self, populated):
        doc = populated.prove_membership("JP-13-113-01", ["JP"]).to_dict()
        assert "JP-13-113-01" not in str(doc)
        assert set(doc["publicInputs"]) == {"merkleRoot", "treeDepth", "allowedCountries", "allowedRegions"}

    def test_altered_conditions_rejected(self, populated):
        """Swapping the allowed set on a valid proof breaks it."""
        proof = populated.prove_membership("JP-13-113-01", ["JP"])
        forged = dataclasses.replace(
            proof,
            public_inputs=dataclasses.replace(proof.public_inputs, allowed_countries=("US",)),
        )
        assert not populated.verify(forged).valid

    def test_expected_public_inputs(self, populated):
        proof = populated.prove_membership("JP-13-113-01", ["JP"])
        other = dataclasses.replace(proof.public_inputs, allowed_countries=("US",))
        verdict = populated.verify(proof, public_inputs=other)
        assert not verdict.valid
        assert "do not match" in verdict.reason

    def test_circuit_mismatch(self, populated):
        proof = populated.prove_membership("JP-13-113-01", ["JP"])
        other = populated.circuit_for(dataclasses.replace(proof.public_inputs, allowed_countries=()))
        assert not populated.verify(proof, circuit=other).valid
        assert populated.verify(proof, circuit=populated.circuit_for(proof.public_inputs)).valid

    def test_stale_root(self, populated):
        proof = populated.prove_membership("JP-13-113-01")
        populated.register_pid("JP-13-113-03")
        with pytest.raises(StaleRoot):
            populated.verify(proof)

    def test_unknown_universe(self, populated, hasher, codec):
        """A verifier whose registry never saw the universe rejects the proof."""
        proof = populated.prove_membership("JP-13-113-01")
        stranger = ProofEngine(hasher=hasher, merkle=MerkleRegistry(hasher), codec=codec)
        verdict = stranger.verify(proof)
        assert not verdict.valid
        assert "universe" in verdict.reason

    def test_no_trusted_root(self, populated, hasher, codec):
        """A verifier with neither registry nor published root accepts no tree."""
        proof = populated.prove_membership("JP-13-113-01")
        verdict = ProofEngine(hasher=hasher, codec=codec).verify(proof)
        assert not verdict.valid
        assert "No trusted root" in verdict.reason

    def test_published_root(self, populated, hasher, codec):
        proof = populated.prove_membership("JP-13-113-01", ["JP"])
        root = populated.merkle.snapshot(PID_UNIVERSE).root
        verifier = ProofEngine(hasher=hasher, codec=codec, published_roots={PID_UNIVERSE: root})
        assert verifier.verify(proof).valid

    def test_private_tree_rejected(self, populated, hasher, codec):
        """A proof over a tree the verifier never saw published is refused."""
        rogue = ProofEngine(hasher=hasher, merkle=MerkleRegistry(hasher), codec=codec)
        rogue.register_pid("JP-13-999-98")
        rogue.register_pid("JP-13-999-99")
        proof = rogue.prove_membership("JP-13-999-99", ["JP"])
        root = populated.merkle.snapshot(PID_UNIVERSE).root
        verifier = ProofEngine(hasher=hasher, codec=codec, published_roots={PID_UNIVERSE: root})
        verdict = verifier.verify(proof)
        assert not verdict.valid
        assert "published root" in verdict.reason
        with pytest.raises(StaleRoot):
            populated.verify(proof)

    def test_repeated_set_values_rejected(self, populated):
        with pytest.raises(ValueError):
            populated.prove_membership("JP-13-113-01", ["JP", "JP"])

    def test_wrong_witness_type(self, populated):
        pi = MembershipPublicInputs(root=1, depth=1)
        with pytest.raises(TypeError):
            populated.generate(VersionWitness(1), pi)

    def test_foreign_circuit_rejected_at_generation(self, populated, merkle, codec):
        components = codec.decode("JP-13-113-01")
        snapshot, path = merkle.witness("pid", populated.pid_leaf_value(components))
        pi = MembershipPublicInputs(root=snapshot.root, depth=snapshot.depth)
        foreign = populated.circuit_for(MembershipPublicInputs(root=1, depth=snapshot.depth + 1))
        with pytest.raises(ValueError):
            populated.generate(MembershipWitness(components, path), pi, circuit=foreign)

    def test_through_worker_pool(self, hasher, merkle, codec):
        with ProofWorkerPool(workers=2, executor="thread") as pool:
            engine = ProofEngine(hasher=hasher, merkle=merkle, codec=codec, pool=pool)
            engine.register_pid("JP-13-113-01")
            proof = engine.prove_membership("JP-13-113-01", ["JP"])
            assert engine.verify(proof).valid
            assert pool.metrics.successful_calls == 1


class TestStructure:
    """Well-formedness of a committed address."""

    def test_valid_reveals_country_and_depth(self, engine, issuer, holder):
        cred, opening = issuer.register_holder(holder, "JP-13-113-01")
        proof = engine.prove_structure(opening)
        verdict = engine.verify(proof, credentials=[cred])
        assert verdict.valid, verdict.reason
        assert verdict.revealed_data == {"countryCode": "JP", "depth": 4}

    def test_anchor_to_other_credential(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        other, _ = issuer.register_holder(holder, "JP-13-113-01")
        verdict = engine.verify(engine.prove_structure(opening), credentials=[other])
        assert not verdict.valid
        assert "Commitment" in verdict.reason

    def test_credential_from_untrusted_issuer(self, engine, codec, hasher, holder):
        rogue = CredentialIssuer(SigningKey.generate(), codec=codec, hasher=hasher)
        cred, opening = rogue.register_holder(holder, "JP-13-113-01")
        verdict = engine.verify(engine.prove_structure(opening), credentials=[cred])
        assert not verdict.valid
        assert "unexpected party" in verdict.reason

    def test_provider_directory(self, hasher, codec, issuer, holder):
        cred, opening = issuer.register_holder(holder, "JP-13-113-01")
        directory = ProviderDirectory([AddressProvider("jp-post", "JP Post", issuer.did)])
        engine = ProofEngine(hasher=hasher, codec=codec, trusted_issuers=directory)
        assert engine.verify(engine.prove_structure(opening), credentials=[cred]).valid
        verdict = ProofEngine(hasher=hasher, codec=codec).verify(engine.prove_structure(opening), credentials=[cred])
        assert not verdict.valid
        assert "No trusted issuer" in verdict.reason

    def test_lying_about_depth(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        pi = StructurePublicInputs(country_code="JP", depth=3, commitment=opening.commitment)
        with pytest.raises(WitnessMismatch):
            engine.generate(StructureWitness(opening), pi)

    def test_lying_about_country(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        pi = StructurePublicInputs(country_code="US", depth=4, commitment=opening.commitment)
        with pytest.raises(WitnessMismatch):
            engine.generate(StructureWitness(opening), pi)

    def test_depth_outside_schema(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        pi = StructurePublicInputs(country_code="JP", depth=1, commitment=opening.commitment)
        with pytest.raises(ValueError):
            engine.generate(StructureWitness(opening), pi)


class TestSelectiveReveal:
    """Disclosure of chosen hierarchy levels only."""

    def test_reveal_country_and_region(self, engine, issuer, holder):
        cred, opening = issuer.register_holder(holder, "JP-13-113-01")
        proof = engine.prove_selective_reveal(opening, ["country", "admin1"])
        verdict = engine.verify(proof, credentials=[cred])
        assert verdict.valid, verdict.reason
        assert verdict.revealed_data == {"country": "JP", "admin1": "13"}
        assert "113" not in str(proof.to_dict()["publicInputs"]["revealed"])

    def test_reveal_nothing(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13")
        proof = engine.prove_selective_reveal(opening, [])
        verdict = engine.verify(proof)
        assert verdict.valid
        assert verdict.revealed_data == {}

    def test_absent_level_is_not_revealed(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13")
        proof = engine.prove_selective_reveal(opening, ["country", "unit"])
        assert engine.verify(proof).revealed_data == {"country": "JP"}

    def test_forged_reveal_rejected(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        proof = engine.prove_selective_reveal(opening, ["country", "admin1"])
        forged_inputs = SelectiveRevealPublicInputs(
            revealed=(("country", "JP"), ("admin1", "27")),
            full_commitment=proof.public_inputs.full_commitment,
            revealed_commitment=proof.public_inputs.revealed_commitment,
        )
        assert not engine.verify(dataclasses.replace(proof, public_inputs=forged_inputs)).valid

    def test_swapped_commitment_rejected(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        proof = engine.prove_selective_reveal(opening, ["country"])
        forged_inputs = dataclasses.replace(proof.public_inputs, full_commitment=12345)
        verdict = engine.verify(dataclasses.replace(proof, public_inputs=forged_inputs))
        assert not verdict.valid

    def test_unknown_level(self, engine, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13")
        with pytest.raises(ValueError):
            engine.prove_selective_reveal(opening, ["street"])


class TestVersion:
    """Continuity between an old and a new PID of one holder."""

    OLD, NEW = "JP-13-113-01", "JP-27-101-03"

    @pytest.fixture
    def registered(self, issuer, holder):
        old_cred, _ = issuer.register_holder(holder, self.OLD)
        new_cred, _ = issuer.register_holder(holder, self.NEW)
        return old_cred, new_cred

    @pytest.fixture
    def moved(self, registered, revocation):
        revocation.revoke(self.OLD, "moved", new_pid=self.NEW)
        return registered

    def test_valid(self, engine, holder, moved):
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        verdict = engine.verify(proof, credentials=list(moved))
        assert verdict.valid, verdict.reason
        assert verdict.revealed_data == {"oldPid": self.OLD, "newPid": self.NEW}

    def test_valid_from_documents(self, engine, holder, moved):
        proof = proof_from_dict(engine.prove_version(holder, self.OLD, self.NEW).to_dict())
        assert engine.verify(proof, credentials=[c.to_dict() for c in moved]).valid

    def test_unanchored_bindings_rejected(self, engine, moved):
        """Without credentials anyone could bind both PIDs to their own secret."""
        stranger = HolderKey.generate()
        verdict = engine.verify(engine.prove_version(stranger, self.OLD, self.NEW))
        assert not verdict.valid
        assert "not anchored" in verdict.reason

    def test_rewritten_bindings_break_the_signature(self, engine, hasher, moved):
        stranger = HolderKey.generate()
        proof = engine.prove_version(stranger, self.OLD, self.NEW)
        docs = [c.to_dict() for c in moved]
        for doc, pid in zip(docs, (self.OLD, self.NEW)):
            doc["credentialSubject"]["holderBinding"] = to_hex(stranger.binding_for(pid, hasher))
        verdict = engine.verify(proof, credentials=docs)
        assert not verdict.valid
        assert "signature" in verdict.reason

    def test_credentials_from_untrusted_issuer(self, engine, codec, hasher, moved):
        stranger = HolderKey.generate()
        rogue = CredentialIssuer(SigningKey.generate(), codec=codec, hasher=hasher)
        creds = [rogue.register_holder(stranger, pid)[0] for pid in (self.OLD, self.NEW)]
        verdict = engine.verify(engine.prove_version(stranger, self.OLD, self.NEW), credentials=creds)
        assert not verdict.valid
        assert "unexpected party" in verdict.reason

    def test_wrong_successor(self, engine, issuer, holder, moved):
        """Binding tags alone cannot invent a move the registry never recorded."""
        other = "JP-27-101-04"
        other_cred, _ = issuer.register_holder(holder, other)
        proof = engine.prove_version(holder, self.OLD, other)
        verdict = engine.verify(proof, credentials=[moved[0], other_cred])
        assert not verdict.valid
        assert "successor" in verdict.reason

    def test_old_not_revoked(self, engine, holder, registered, revocation):
        revocation.revoke("JP-01-100-01", "withdrawn")
        verdict = engine.verify(engine.prove_version(holder, self.OLD, self.NEW), credentials=list(registered))
        assert not verdict.valid
        assert verdict.reason == "Old PID is not revoked"

    def test_no_list(self, engine, holder, registered):
        verdict = engine.verify(engine.prove_version(holder, self.OLD, self.NEW), credentials=list(registered))
        assert not verdict.valid
        assert "No revocation list" in verdict.reason

    def test_other_holder_credentials(self, engine, issuer, holder, moved):
        stranger = HolderKey.generate()
        old_cred, _ = issuer.register_holder(stranger, self.OLD)
        new_cred, _ = issuer.register_holder(stranger, self.NEW)
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        verdict = engine.verify(proof, credentials=[old_cred, new_cred])
        assert not verdict.valid
        assert "Binding" in verdict.reason

    def test_credential_count(self, engine, holder, moved):
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        assert not engine.verify(proof, credentials=[moved[0]]).valid

    def test_explicit_foreign_list_rejected(self, engine, holder, moved):
        """A list from another issuer cannot confirm the move."""
        other = SigningKey.generate()
        foreign = sign(create_list(other.did, [create_entry(self.OLD, "moved", new_pid=self.NEW)]), other)
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        verdict = engine.verify(proof, credentials=list(moved), revocation_list=foreign)
        assert not verdict.valid

    def test_no_trusted_issuer(self, hasher, codec, holder, issuer_key, registered):
        """An engine with neither registry nor issuer trusts no list at all."""
        engine = ProofEngine(hasher=hasher, codec=codec)
        signed = sign(create_list(issuer_key.did, [create_entry(self.OLD, "moved", new_pid=self.NEW)]), issuer_key)
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        verdict = engine.verify(proof, credentials=list(registered), revocation_list=signed)
        assert not verdict.valid
        assert "No trusted issuer" in verdict.reason

    def test_pinned_issuer(self, hasher, codec, holder, issuer_key, registered):
        engine = ProofEngine(hasher=hasher, codec=codec, issuer=issuer_key.did)
        signed = sign(create_list(issuer_key.did, [create_entry(self.OLD, "moved", new_pid=self.NEW)]), issuer_key)
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        assert engine.verify(proof, credentials=list(registered), revocation_list=signed).valid

    def test_pinned_issuer_rejects_self_signed_list(self, hasher, codec, holder, issuer_key, registered):
        """A relink signed by someone other than the pinned issuer is refused."""
        engine = ProofEngine(hasher=hasher, codec=codec, issuer=issuer_key.did)
        attacker = SigningKey.generate()
        forged = sign(create_list(attacker.did, [create_entry(self.OLD, "moved", new_pid=self.NEW)]), attacker)
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        verdict = engine.verify(proof, credentials=list(registered), revocation_list=forged)
        assert not verdict.valid

    def test_issuer_must_match_registry(self, hasher, codec, revocation):
        with pytest.raises(ValueError):
            ProofEngine(hasher=hasher, codec=codec, revocation=revocation, issuer=SigningKey.generate().did)

    def test_identical_pids(self, engine, holder):
        with pytest.raises(ValueError):
            engine.prove_version(holder, self.OLD, self.OLD)

    def test_wrong_secret(self, engine, holder, moved):
        proof = engine.prove_version(holder, self.OLD, self.NEW)
        with pytest.raises(WitnessMismatch):
            engine.generate(VersionWitness(holder.secret + 1), proof.public_inputs)


class TestLocker:
    """Locker membership inside one facility."""

    FACILITY = "FACILITY-SHIBUYA"

    @pytest.fixture
    def lockers(self, engine):
        for locker, zone in [("LOCKER-A-041", "A"), ("LOCKER-A-042", "A"), ("LOCKER-B-001", "B")]:
            engine.register_locker(self.FACILITY, locker, zone)
        engine.register_locker("FACILITY-UMEDA", "LOCKER-A-042", "A")
        return engine

    def test_reveals_facility_only(self, lockers):
        proof = lockers.prove_locker(self.FACILITY, "LOCKER-A-042", "A")
        verdict = lockers.verify(proof)
        assert verdict.valid, verdict.reason
        assert verdict.revealed_data == {"facilityId": self.FACILITY}
        assert "LOCKER-A-042" not in str(proof.to_dict())

    def test_wrong_zone(self, lockers):
        with pytest.raises(LookupError):
            lockers.prove_locker(self.FACILITY, "LOCKER-A-042", "B")

    def test_unknown_facility(self, lockers):
        proof = lockers.prove_locker(self.FACILITY, "LOCKER-A-042", "A")
        forged = dataclasses.replace(
            proof,
            public_inputs=dataclasses.replace(proof.public_inputs, facility_id="FACILITY-NOWHERE"),
        )
        assert not lockers.verify(forged).valid

    def test_facility_trees_are_separate(self, lockers):
        a = lockers.prove_locker(self.FACILITY, "LOCKER-A-042", "A")
        b = lockers.prove_locker("FACILITY-UMEDA", "LOCKER-A-042", "A")
        assert a.public_inputs.root != b.public_inputs.root
        assert lockers.verify(b).valid


class TestSerialization:
    """The exposed proof format."""

    def test_round_trip_and_verify(self, populated, issuer, holder):
        _, opening = issuer.register_holder(holder, "JP-13-113-01")
        for proof in (
            populated.prove_membership("JP-13-113-01", ["JP"]),
            populated.prove_selective_reveal(opening, ["country"]),
        ):
            parsed = proof_from_dict(proof_to_dict(proof))
            assert parsed == proof
            assert populated.verify(parsed).valid

    def test_locker_round_trip(self, engine):
        engine.register_locker("F1", "L1", "Z")
        proof = engine.prove_locker("F1", "L1", "Z")
        parsed = proof_from_dict(proof.to_dict())
        assert isinstance(parsed, LockerProof)
        assert parsed.public_inputs == LockerPublicInputs("F1", proof.public_inputs.root, proof.public_inputs.depth)

    def test_schema_violation(self, populated):
        doc = populated.prove_membership("JP-13-113-01").to_dict()
        doc["extra"] = True
        with pytest.raises(ProofVerificationFailed):
            proof_from_dict(doc)

    def test_unknown_type(self, populated):
        doc = populated.prove_membership("JP-13-113-01").to_dict()
        doc["proofType"] = "teleport"
        with pytest.raises(ProofVerificationFailed):
            proof_from_dict(doc)

    def test_non_canonical_root(self, populated):
        doc = populated.prove_membership("JP-13-113-01").to_dict()
        doc["publicInputs"]["merkleRoot"] = "f" * 64
        with pytest.raises(ProofVerificationFailed):
            proof_from_dict(doc)

    def test_type_dispatch(self, populated):
        parsed = proof_from_dict(populated.prove_membership("JP-13-113-01").to_dict())
        assert isinstance(parsed, MembershipProof)
        assert parsed.proof_type is ProofType.MEMBERSHIP

    def test_verdict_dict(self, populated):
        verdict = populated.verify(populated.prove_membership("JP-13-113-01"))
        assert verdict.to_dict() == {"valid": True}


class TestRevocationInteraction:
    """Proofs against the injected revocation registry."""

    def test_revoked_pid_cannot_prove_membership(self, populated, revocation):
        revocation.revoke("JP-13-113-01", "moved", new_pid="JP-27-101-03")
        with pytest.raises(RevokedPID) as exc:
            populated.prove_membership("JP-13-113-01")
        assert exc.value.successor == "JP-27-101-03"
        assert populated.verify(populated.prove_membership("JP-27-101-03")).valid

    def test_successor_chain_reported(self, populated, revocation):
        revocation.revoke("JP-13-113-01", "moved", new_pid="JP-13-113-02")
        revocation.revoke("JP-13-113-02", "moved", new_pid="JP-27-101-03")
        with pytest.raises(RevokedPID) as exc:
            populated.prove_membership("JP-13-113-01")
        assert exc.value.successor == "JP-27-101-03"

    def test_version_uses_registry_issuer(self, hasher, codec, holder):
        key = SigningKey.generate()
        registry = RevocationRegistry(key.did, signing_key=key)
        issuer = CredentialIssuer(key, codec=codec, hasher=hasher)
        creds = [issuer.register_holder(holder, pid)[0] for pid in ("JP-13-113-01", "JP-27-101-03")]
        engine = ProofEngine(hasher=hasher, revocation=registry, codec=codec)
        registry.revoke("JP-13-113-01", new_pid="JP-27-101-03")
        proof = engine.prove_version(holder, "JP-13-113-01", "JP-27-101-03")
        assert engine.verify(proof, credentials=creds).valid
