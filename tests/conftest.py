"""
Pytest configuration for xnft tests.
"""
import sys
import os

import pytest

# `import xnft` works without installing the package (src/ on sys.path)
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
_SRC_DIR = os.path.join(_ROOT, 'src')

if _SRC_DIR not in sys.path:
	sys.path.insert(0, _SRC_DIR)

from xnft.config import HarnessConfig  # noqa: E402
from xnft.devnet import DevnetNetwork, dev_account  # noqa: E402
from xnft.harness import BridgeHarness  # noqa: E402


@pytest.fixture
def config():
	return HarnessConfig(block_time=0.001, delivery_delay=2, session_length=3)


@pytest.fixture
def net(config):
	"""Relay + Quartz + Karura, driven manually through ``net.run_until``."""
	return DevnetNetwork.standard(config)


@pytest.fixture
def alice():
	return dev_account("//Alice")


@pytest.fixture
def bob():
	return dev_account("//Bob")


@pytest.fixture
def charlie():
	return dev_account("//Charlie")


@pytest.fixture
def bridged(net, config, alice):
	"""Async factory: a ``BridgeHarness`` whose channels and fee currencies are set up."""

	async def _setup():
		harness = BridgeHarness.from_ledgers(await net.connect(), config)
		await net.run_until(harness.setup(alice), max_blocks=50)
		return harness

	return _setup
