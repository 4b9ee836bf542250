# Shared test isolation.
# Created: 2026-10-19

import pytest


@pytest.fixture(autouse=True)
def _isolated_config_dir(tmp_path, monkeypatch):
    """Keep config and audit files out of the real home directory."""
    import ssogate.security.audit as audit
    from ssogate.config import get_settings

    monkeypatch.setenv("SSOGATE_CONFIG_DIR", str(tmp_path / "config"))
    audit.reset_audit_logger()
    get_settings.cache_clear()
    yield
    audit.reset_audit_logger()
    get_settings.cache_clear()
