"""Tests for configuration loading."""

import json

import pytest
from pydantic import ValidationError

from arcrelay.config import ArcRelayConfig, load_config
from arcrelay.errors import ConfigFault


def test_load_appsettings_json_with_pascal_case_keys(tmp_path, settings):
    config_path = tmp_path / "appsettings.json"
    config_path.write_text(json.dumps(settings))

    config = load_config(str(config_path))
    assert config.tenant_id == "tenant-1"
    assert config.arc_server_principal_id == "c579b537-d28b-491a-98b0-fccd193c2d05"
    assert config.authority == "https://login.microsoftonline.com/tenant-1"


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
tenant_id: t
client_id: c
client_secret: s
subscription_id: sub
resource_group: rg
arc_server_name: srv
arc_server_location: westeurope
arc_server_client_id: app
arc_server_principal_id: principal
arcee_api_url: https://localhost:5001
renew_before_seconds: 45
retry:
  max_attempts: 4
  cap: 10
"""
    )
    monkeypatch.setenv("ARCRELAY_CONFIG", str(config_path))

    config = load_config()
    assert config.arc_server_location == "westeurope"
    assert config.renew_before_seconds == 45
    assert config.retry.max_attempts == 4
    assert config.retry.cap == 10


def test_env_secret_overrides_file(tmp_path, settings, monkeypatch):
    config_path = tmp_path / "appsettings.json"
    config_path.write_text(json.dumps(settings))
    monkeypatch.setenv("ARCRELAY_CLIENT_SECRET", "from-env")

    assert load_config(str(config_path)).client_secret == "from-env"


def test_tab_indented_appsettings_with_unused_keys(tmp_path, settings):
    settings["ArceeApiBaseAddress"] = "https://localhost:5001/api"
    config_path = tmp_path / "appsettings.json"
    config_path.write_text(json.dumps(settings, indent="\t"))

    config = load_config(str(config_path))
    assert config.arcee_api_url == "https://localhost:5001"
    assert not hasattr(config, "arcee_api_base_address")


def test_missing_file_is_config_fault(tmp_path):
    with pytest.raises(ConfigFault):
        load_config(str(tmp_path / "nope.json"))


def test_invalid_file_is_config_fault(tmp_path, settings):
    config_path = tmp_path / "appsettings.json"
    del settings["TenantId"]
    config_path.write_text(json.dumps(settings))

    with pytest.raises(ConfigFault):
        load_config(str(config_path))


def test_malformed_authority_rejected(settings):
    settings["Instance"] = "login.example/{0}"
    with pytest.raises(ValidationError):
        ArcRelayConfig.model_validate(settings)


def test_secret_and_certificate_are_exclusive(settings):
    settings["client_certificate_path"] = "/tmp/cert.pem"
    with pytest.raises(ValidationError):
        ArcRelayConfig.model_validate(settings)

    del settings["ClientSecret"]
    del settings["client_certificate_path"]
    with pytest.raises(ValidationError):
        ArcRelayConfig.model_validate(settings)


def test_derived_urls(config):
    assert config.expected_server_identity == (
        "/subscriptions/sub-1/resourceGroups/rg-1"
        "/providers/Microsoft.HybridCompute/machines/server-1"
    )
    assert config.credentials_url == (
        "https://management.azure.com/subscriptions/sub-1/resourceGroups/rg-1"
        "/providers/Microsoft.HybridCompute/machines/server-1"
        "/providers/Microsoft.HybridConnectivity/endpoints/default/listCredentials"
        "?api-version=2021-10-06-preview"
    )
    assert config.registration_url == (
        "https://control.eastus.arc.wac.azure.com:47011/sni/register?api-version=2022-05-01"
    )
    assert config.relay_hostname == (
        "c579b537-d28b-491a-98b0-fccd193c2d05.eastus.arc.waconazure.com"
    )
    assert config.management_scope == "https://management.azure.com/.default"
    assert config.pop_scope == "5fa47195-e890-485e-a90c-3d417cfcb1e2/.default"


def test_local_proxy_uses_fixed_hostname(settings):
    settings["use_local_proxy"] = True
    config = ArcRelayConfig.model_validate(settings)
    assert config.relay_hostname == "localhost"
    assert config.registration_url.startswith("https://localhost:47011/sni/register")
