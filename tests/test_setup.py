"""Test that the project setup is working correctly."""

import copytrade_replicator


def test_version() -> None:
    """Test that version is defined."""
    assert copytrade_replicator.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from copytrade_replicator import chain
    from copytrade_replicator import notifier
    from copytrade_replicator import poller
    from copytrade_replicator import service
    from copytrade_replicator import storage
    from copytrade_replicator import trading

    # Just verify imports work
    assert chain is not None
    assert poller is not None
    assert trading is not None
    assert notifier is not None
    assert storage is not None
    assert service is not None
