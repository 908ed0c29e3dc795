import pytest
from pydantic import ValidationError

from shotpix.gateway.config import DEFAULT_SUPPORTED_ASPECT_RATIOS, GatewayConfig


def test_defaults() -> None:
    config = GatewayConfig(_env_file=None)

    assert config.supported_aspect_ratios == DEFAULT_SUPPORTED_ASPECT_RATIOS
    assert config.default_aspect_ratio == "3:4"
    assert config.safety_strictness == "strict"
    assert config.poll_max_attempts == 20
    assert not config.has_vertex_credentials


def test_private_key_newlines_are_unescaped() -> None:
    config = GatewayConfig(_env_file=None, google_service_account_private_key="-----BEGIN-----\\nabc\\n-----END-----")

    assert config.google_service_account_private_key == "-----BEGIN-----\nabc\n-----END-----"


def test_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_VERTEX_PROJECT_ID", "env-project")
    monkeypatch.setenv("SAFETY_STRICTNESS", "lenient")

    config = GatewayConfig(_env_file=None)

    assert config.google_vertex_project_id == "env-project"
    assert config.safety_strictness == "lenient"


def test_default_ratio_must_be_supported() -> None:
    with pytest.raises(ValidationError):
        GatewayConfig(_env_file=None, supported_aspect_ratios=["1:1"], default_aspect_ratio="3:4")


def test_private_key_is_hidden_from_repr(private_key_pem: str) -> None:
    config = GatewayConfig(_env_file=None, google_service_account_private_key=private_key_pem)

    assert "PRIVATE KEY" not in repr(config)
