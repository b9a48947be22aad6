"""
End-to-end flows across registration, shipping, moves, lockers and resolution.

Each test follows one user story from issuance to the party that finally
consumes the result, using only public interfaces.
"""

import pytest

from zkaddr.core import format_rfc3339, utc_now
from zkaddr.credentials import AddressProvider, ProviderDirectory, verify_credential
from zkaddr.errors import StaleRoot
from zkaddr.patterns import ProofEngine, proof_from_dict
from zkaddr.resolution import (
    AccessPolicy,
    AddressStore,
    PolicyStore,
    ResolutionRequest,
    ResolutionService,
    TokenAuthority,
)
from zkaddr.shipping import (
    ShippingConditions,
    ShippingProvider,
    ShippingRequester,
    ShippingValidationResponse,
    sign_shipping_request,
)
from zkaddr.vc import SigningKey

HOME = "JP-13-113-01"
NEW_HOME = "JP-27-101-03"


class TestRegistrationAndShipping:
    """A holder registers an address and buys from a shop that ships to Tokyo only."""

    def test_checkout(self, engine, issuer, holder):
        cred, _ = issuer.register_holder(holder, HOME)
        directory = ProviderDirectory([AddressProvider("jp-post", "JP Post", issuer.did)])
        assert verify_credential(cred.to_dict(), trusted_issuers=directory)

        for pid in (HOME, "JP-13-113-02", NEW_HOME):
            engine.register_pid(pid)
        provider = ShippingProvider(engine)
        provider.register_holder(HOME, holder.did)

        shop = ShippingRequester(ProofEngine(engine.hasher, merkle=engine.merkle, codec=engine.codec),
                                 SigningKey.generate())
        conditions = ShippingConditions(allowed_countries=("JP",), allowed_regions=("13",))
        request = sign_shipping_request(holder, HOME, conditions, shop.did)

        wire = provider.validate_shipping_request(request).to_dict()
        assert wire["valid"]
        assert HOME not in str(wire)

        token = shop.create_shipment_token(ShippingValidationResponse.from_dict(wire), conditions)
        assert token.is_signed_by(shop.did)
        assert token.pid_token == provider.pid_token(HOME)

    def test_registry_rotation_invalidates_old_proofs(self, engine, holder):
        engine.register_pid(HOME)
        provider = ShippingProvider(engine)
        provider.register_holder(HOME, holder.did)
        conditions = ShippingConditions(allowed_countries=("JP",))
        response = provider.validate_shipping_request(sign_shipping_request(holder, HOME, conditions, "did:key:zShop"))
        assert engine.verify(response.zk_proof).valid

        engine.register_pid("JP-13-113-02")
        with pytest.raises(StaleRoot):
            engine.verify(response.zk_proof)

        fresh = provider.validate_shipping_request(sign_shipping_request(holder, HOME, conditions, "did:key:zShop"))
        assert engine.verify(fresh.zk_proof).valid


class TestMove:
    """A holder moves from Tokyo to Osaka and proves continuity."""

    def test_move(self, engine, issuer, holder, revocation):
        old_cred, _ = issuer.register_holder(holder, HOME)
        new_cred, _ = issuer.register_holder(holder, NEW_HOME)
        revocation.revoke(HOME, "moved", new_pid=NEW_HOME)

        proof = proof_from_dict(engine.prove_version(holder, HOME, NEW_HOME).to_dict())
        verdict = engine.verify(proof, credentials=[old_cred.to_dict(), new_cred.to_dict()])
        assert verdict.valid, verdict.reason
        assert verdict.revealed_data == {"oldPid": HOME, "newPid": NEW_HOME}

        bogus = engine.prove_version(holder, HOME, "JP-99-999-99")
        assert not engine.verify(bogus).valid

    def test_old_address_stops_shipping(self, engine, holder, revocation):
        engine.register_pid(HOME)
        provider = ShippingProvider(engine)
        provider.register_holder(HOME, holder.did)
        revocation.revoke(HOME, "moved", new_pid=NEW_HOME)
        response = provider.validate_shipping_request(
            sign_shipping_request(holder, HOME, ShippingConditions(), "did:key:zShop"),
        )
        assert not response.valid
        assert response.error["context"]["successor"] == NEW_HOME


class TestLockerPickup:
    """A parcel goes to a locker; the carrier learns only the facility."""

    def test_pickup(self, engine):
        for locker, zone in [("LOCKER-A-041", "A"), ("LOCKER-A-042", "A"), ("LOCKER-B-007", "B")]:
            engine.register_locker("FACILITY-SHIBUYA", locker, zone)
        proof = engine.prove_locker("FACILITY-SHIBUYA", "LOCKER-A-042", "A")
        doc = proof.to_dict()
        assert "LOCKER-A-042" not in str(doc)
        verdict = engine.verify(proof_from_dict(doc))
        assert verdict.valid
        assert verdict.revealed_data == {"facilityId": "FACILITY-SHIBUYA"}


class TestSelectiveDisclosure:
    """A tax form needs the prefecture but nothing finer."""

    def test_prefecture_only(self, engine, issuer, holder):
        cred, opening = issuer.register_holder(holder, HOME)
        proof = engine.prove_selective_reveal(opening, ["country", "admin1"])
        verdict = engine.verify(proof_from_dict(proof.to_dict()), credentials=[cred])
        assert verdict.revealed_data == {"country": "JP", "admin1": "13"}


class TestCarrierResolution:
    """The delivering carrier resolves the PID under the owner's policy."""

    def test_resolution_with_audit(self, holder, revocation):
        carrier = SigningKey.generate().did
        store = AddressStore()
        store.put(HOME, {"prefecture": "Tokyo", "city": "Shibuya"})
        tokens = TokenAuthority()
        service = ResolutionService(store, PolicyStore(), tokens, revocation)
        service.policies.create(AccessPolicy("deliver", holder.did, carrier, HOME, "resolve"))
        service.policies.create(AccessPolicy("owner-audit", holder.did, holder.did, HOME, "audit-read"))

        request = ResolutionRequest(HOME, carrier, tokens.issue(carrier), "delivery", format_rfc3339(utc_now()))
        response = service.resolve(request)
        assert response.success
        assert response.address["city"] == "Shibuya"

        trail = service.read_audit(holder.did, tokens.issue(holder.did), pid=HOME)
        assert [e["principal"] for e in trail] == [carrier]
        assert trail[0]["context"]["policyId"] == "deliver"

        revocation.revoke(HOME, "moved", new_pid=NEW_HOME)
        later = service.resolve(
            ResolutionRequest(HOME, carrier, tokens.issue(carrier), "redelivery", format_rfc3339(utc_now())),
        )
        assert not later.success
        assert later.error["code"] == "REVOKED_PID"
        assert service.audit.verify_chain() == (True, None)
