"""Tests for ChainConfig and binary resolution."""

import dataclasses

import pytest

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jumpchain import ChainConfig, ConfigurationError, RuleTableController, resolve_binary
from jumpchain import config as config_module


class TestChainConfig:
    """Tests for constructor-time validation and defaults."""

    def test_defaults(self):
        """ttl defaults to 300 with a 30 second sweep."""
        config = ChainConfig(chain="INPUT", binary="/sbin/iptables")

        assert config.family == 4
        assert config.ttl == 300
        assert config.check_period == 30
        assert config.expires

    def test_zero_ttl_disables_expiry(self):
        """ttl=0 means hosts never expire."""
        config = ChainConfig(chain="INPUT", binary="/sbin/iptables", ttl=0)

        assert not config.expires
        assert config.check_period == 1

    @pytest.mark.parametrize("family", [0, 5, "4", None])
    def test_bad_family(self, family):
        """Only 4 and 6 are accepted."""
        with pytest.raises(ConfigurationError):
            ChainConfig(chain="INPUT", family=family)

    def test_bad_family_via_create(self):
        """The keyword constructor validates the same way."""
        with pytest.raises(ConfigurationError):
            RuleTableController.create("INPUT", family=7)

    @pytest.mark.parametrize("chain", ["", "   ", None])
    def test_bad_chain(self, chain):
        """The chain name is required."""
        with pytest.raises(ConfigurationError):
            ChainConfig(chain=chain, binary="/sbin/iptables")

    def test_negative_ttl(self):
        """Negative TTLs are rejected."""
        with pytest.raises(ConfigurationError):
            ChainConfig(chain="INPUT", binary="/sbin/iptables", ttl=-5)

    def test_bad_check_period(self):
        """An explicit check period must be positive."""
        with pytest.raises(ConfigurationError):
            ChainConfig(chain="INPUT", binary="/sbin/iptables", check_period=0)

    def test_frozen(self):
        """Configuration cannot change after construction."""
        config = ChainConfig(chain="INPUT", binary="/sbin/iptables")

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.chain = "FORWARD"

    def test_binary_resolved_when_missing(self, monkeypatch):
        """Without a binary the family's tool is looked up."""
        monkeypatch.setattr(config_module.shutil, "which", lambda name: f"/opt/bin/{name}")

        assert ChainConfig(chain="INPUT").binary == "/opt/bin/iptables"
        assert ChainConfig(chain="INPUT", family=6).binary == "/opt/bin/ip6tables"


class TestResolveBinary:
    """Tests for PATH lookup with fallback."""

    def test_found_on_path(self, monkeypatch):
        monkeypatch.setattr(config_module.shutil, "which", lambda name: f"/usr/bin/{name}")

        assert resolve_binary(4) == "/usr/bin/iptables"

    def test_fallback(self, monkeypatch):
        """Missing from PATH falls back to /usr/sbin."""
        monkeypatch.setattr(config_module.shutil, "which", lambda name: None)

        assert resolve_binary(4) == "/usr/sbin/iptables"
        assert resolve_binary(6) == "/usr/sbin/ip6tables"

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError):
            resolve_binary(5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
