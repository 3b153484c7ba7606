import os

# Pin the environment before the app (and its Settings) is imported.
os.environ["ENV"] = "test"
os.environ["KV_BACKEND"] = "memory"
os.environ["ORDER_TOKEN_SECRET"] = "test-order-secret"
os.environ["COMPUTE_PROVIDER_KEYS"] = "worker-key-1,worker-key-2"
os.environ["GPU_PROVIDER_KEYS"] = "gpu-key"
os.environ["STORAGE_PROVIDER_KEYS"] = "storage-key"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_id"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ["PAYMENT_TEST_MODE"] = "1"
os.environ["WEBHOOK_GUARD"] = ""
os.environ["DEPLOYER_URL"] = ""
os.environ["RESEND_API_KEY"] = ""

import pytest  # noqa: E402

from app.core.config import COMPUTE_ALIASES, COMPUTE_PRICE60, FamilyConfig  # noqa: E402
from app.services.dispatcher import Dispatcher  # noqa: E402
from app.services.kv import MemoryStore, get_store  # noqa: E402
from app.services.payments import PaymentVerifier, RazorpayClient  # noqa: E402

NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, t: float = NOW) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture(autouse=True)
def _clean_store():
    store = get_store()
    if isinstance(store, MemoryStore):
        store.clear()
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mem_store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def compute_family() -> FamilyConfig:
    return FamilyConfig(
        name="compute",
        price60=COMPUTE_PRICE60,
        aliases=COMPUTE_ALIASES,
        worker_keys=("wk",),
        token_secret="unit-secret",
    )


@pytest.fixture
def sent() -> list:
    return []


@pytest.fixture
def dispatcher(compute_family, mem_store, clock, sent) -> Dispatcher:
    payments = PaymentVerifier(RazorpayClient("id", "secret"), bypass=True)
    return Dispatcher(compute_family, mem_store, payments, notify=sent.append, clock=clock)
