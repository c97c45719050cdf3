import pytest
import torch

from kalman_engine import config


@pytest.fixture(autouse=True)
def deterministic():
    torch.manual_seed(0)
    torch.cuda.manual_seed_all(0)
    torch.use_deterministic_algorithms(True)


@pytest.fixture(autouse=True)
def default_config():
    dtype, device = config.get_dtype(), config.get_device()
    yield
    config.set_dtype(dtype)
    config.set_device(device)


def pytest_runtest_setup(item):
    if "cuda" in item.keywords and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
