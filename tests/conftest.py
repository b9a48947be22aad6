import os
import pathlib
import sys

import pytest

# Small proof parameters so the real backend runs in test time. The verifier
# reads the same configuration, so proofs still check end to end.
os.environ.setdefault("ZKADDR_MIMC_ROUNDS", "7")
os.environ.setdefault("ZKADDR_PROOF_REPETITIONS", "12")
os.environ.setdefault("ZKADDR_PROOF_EXECUTOR", "thread")
os.environ.setdefault("ZKADDR_LOG_LEVEL", "error")

# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import zkaddr`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from zkaddr.config import get_config_manager  # noqa: E402
from zkaddr.credentials import CredentialIssuer, HolderKey  # noqa: E402
from zkaddr.field import MiMC  # noqa: E402
from zkaddr.merkle import MerkleRegistry  # noqa: E402
from zkaddr.patterns import ProofEngine  # noqa: E402
from zkaddr.pid import PIDCodec  # noqa: E402
from zkaddr.revocation import RevocationRegistry  # noqa: E402
from zkaddr.vc import SigningKey  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: full-parameter proof tests (skipped unless ZKADDR_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('ZKADDR_RUN_SLOW')
    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set ZKADDR_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _reset_config():
    yield
    get_config_manager().reset()


@pytest.fixture
def codec() -> PIDCodec:
    return PIDCodec()


@pytest.fixture
def hasher() -> MiMC:
    return MiMC()


@pytest.fixture
def issuer_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture
def issuer(issuer_key, codec, hasher) -> CredentialIssuer:
    return CredentialIssuer(issuer_key, codec=codec, hasher=hasher)


@pytest.fixture
def holder() -> HolderKey:
    return HolderKey.generate()


@pytest.fixture
def merkle(hasher) -> MerkleRegistry:
    return MerkleRegistry(hasher)


@pytest.fixture
def revocation(issuer_key) -> RevocationRegistry:
    return RevocationRegistry(issuer_key.did, signing_key=issuer_key)


@pytest.fixture
def engine(hasher, merkle, revocation, codec) -> ProofEngine:
    return ProofEngine(hasher=hasher, merkle=merkle, revocation=revocation, codec=codec)
