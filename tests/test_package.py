"""Basic tests for package structure and imports."""


def test_package_import():
    """Test that the main package can be imported."""
    import postcard

    assert postcard.__version__ == "0.1.0"


def test_submodule_imports():
    """Test that submodules can be imported."""
    from postcard import core, data, estimators, ml, models, power, symbolic

    # Basic import test - modules should exist
    assert core is not None
    assert data is not None
    assert estimators is not None
    assert ml is not None
    assert models is not None
    assert power is not None
    assert symbolic is not None


def test_shared_imports():
    """Test that the shared configuration and logging helpers import."""
    from shared.config import PostcardConfig
    from shared.observability import setup_logging

    assert PostcardConfig is not None
    assert setup_logging is not None
