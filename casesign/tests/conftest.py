from pathlib import Path

import pytest

from casesign.app.core.config import Settings
from casesign.app.services.key_material import SigningIdentity
from casesign.tests.fixtures.pki_factory import PkiBundle, build_pki, pkcs12_bytes

P12_PASSWORD = "s3cret-Pass"


@pytest.fixture(scope="session")
def pki() -> PkiBundle:
    return build_pki()


@pytest.fixture
def signer_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "certs"
    directory.mkdir()
    return directory


@pytest.fixture
def p12_path(pki: PkiBundle, signer_dir: Path) -> Path:
    """Standard container: key, signer certificate and its CA chain."""
    path = signer_dir / "signer.p12"
    path.write_bytes(
        pkcs12_bytes(
            pki.leaf.key,
            pki.leaf.certificate,
            [pki.intermediate.certificate, pki.root.certificate],
            password=P12_PASSWORD,
        )
    )
    return path


@pytest.fixture
def identity(pki: PkiBundle) -> SigningIdentity:
    return SigningIdentity(
        private_key=pki.leaf.key,
        certificate=pki.leaf.asn1,
        embedded_chain=(pki.intermediate.asn1, pki.root.asn1),
    )


@pytest.fixture
def temp_root(tmp_path: Path) -> Path:
    directory = tmp_path / "work"
    directory.mkdir()
    return directory


@pytest.fixture
def make_settings(temp_root: Path):
    """Build isolated settings (no environment, no .env file)."""

    def _make(**overrides) -> Settings:
        values = {"temp_root": temp_root}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def p12_password() -> str:
    return P12_PASSWORD
