import hashlib
import importlib.util
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient
from contracting.compilation import whitelists

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONTRACT_PATH = PROJECT_ROOT / "con_encrypted_counter.py"
HELPER_PATH = PROJECT_ROOT / "client_helper.py"
SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

CONTRACT_NAME = "con_encrypted_counter"
TEST_KEY_BITS = 512


@pytest.fixture(scope="session", autouse=True)
def enable_sha3_and_whitelist():
    whitelists.ALLOWED_BUILTINS.update({"hashlib"})

    if not hasattr(hashlib, "sha3"):
        def _sha3(data):
            if isinstance(data, str):
                data = data.encode("utf-8")
            return hashlib.sha3_256(data).hexdigest()

        setattr(hashlib, "sha3", _sha3)


@pytest.fixture(scope="session")
def helper_module():
    spec = importlib.util.spec_from_file_location("client_helper_tests", HELPER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="session")
def keypair(helper_module):
    return helper_module.generate_keypair(n_length=TEST_KEY_BITS)


@pytest.fixture(scope="session")
def public_key(keypair):
    return keypair[0]


@pytest.fixture(scope="session")
def private_key(keypair):
    return keypair[1]


@pytest.fixture
def client():
    client = ContractingClient(signer="operator", metering=False)
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))
    return client


@pytest.fixture
def contract(client, helper_module, public_key):
    code = CONTRACT_PATH.read_text()
    client.submit(
        code,
        name=CONTRACT_NAME,
        owner=None,
        constructor_args={"public_key": helper_module.public_key_hex(public_key)},
    )
    return client.get_contract(CONTRACT_NAME)


@pytest.fixture
def gateway(contract, helper_module, private_key):
    return helper_module.DecryptionGateway(
        private_key,
        lambda handle, principal: contract.is_granted(handle=handle, principal=principal),
    )
