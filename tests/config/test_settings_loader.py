"""
Tests for asset_config: YAML loading, overrides and the policy bridge.
"""

import textwrap

import pytest

from asset_config import CONFIG_ENV_VAR, DATABASE_URL_ENV_VAR, get_active_settings
from asset_config.bridges import build_workflow_policy
from asset_config.loader import compute_checksum, merge_settings, parse_settings
from asset_config.schema import KernelSettings
from asset_kernel.domain.values import AssetStatus, Role


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)


def write_yaml(tmp_path, body: str):
    path = tmp_path / "override.yaml"
    path.write_text(textwrap.dedent(body))
    return path


class TestDefaults:
    def test_packaged_defaults_match_schema_defaults(self):
        settings = get_active_settings()
        defaults = KernelSettings()
        assert settings.identifiers == defaults.identifiers
        assert settings.access == defaults.access
        assert settings.workflow == defaults.workflow
        assert settings.stats.cache_ttl_seconds == 60
        assert settings.database.url == "sqlite://"

    def test_checksum_is_stable(self):
        assert get_active_settings().checksum == get_active_settings().checksum
        assert len(get_active_settings().checksum) == 64

    def test_load_is_traced(self, captured_logs):
        settings = get_active_settings()
        traces = [r for r in captured_logs() if r["message"] == "ASSET_CONFIG_TRACE"]
        assert traces[-1]["config_checksum"] == settings.checksum


class TestOverrides:
    def test_override_file_wins_key_by_key(self, tmp_path):
        path = write_yaml(
            tmp_path,
            """
            identifiers:
              transfer_order:
                prefix: TRF
                width: 5
            stats:
              cache_ttl_seconds: 5
            """,
        )
        settings = get_active_settings(path)
        assert settings.identifiers.transfer_order.prefix == "TRF"
        assert settings.identifiers.return_order.prefix == "RET"
        assert settings.stats.cache_ttl_seconds == 5
        assert settings.checksum != get_active_settings().checksum

    def test_override_path_from_environment(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path, "inventory:\n  default_min_level: 3\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert get_active_settings().inventory.default_min_level == 3

    def test_database_url_from_environment(self, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV_VAR, "postgresql://assets@db/assets")
        assert get_active_settings().database.url == "postgresql://assets@db/assets"

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")

    def test_empty_override_file_changes_nothing(self, tmp_path):
        path = write_yaml(tmp_path, "")
        assert get_active_settings(path).access == get_active_settings().access


class TestValidation:
    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown settings sections"):
            parse_settings({"reporting": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown keys in 'stats'"):
            parse_settings({"stats": {"ttl": 5}})

    def test_role_list_must_be_a_list(self):
        with pytest.raises(ValueError):
            parse_settings({"access": {"global_roles": "SUPER_ADMIN"}})

    def test_negative_ttl(self):
        with pytest.raises(ValueError):
            parse_settings({"stats": {"cache_ttl_seconds": -1}})

    def test_top_level_must_be_a_mapping(self, tmp_path):
        path = write_yaml(tmp_path, "- just\n- a list\n")
        with pytest.raises(ValueError):
            get_active_settings(path)


class TestMerge:
    def test_sections_merge_without_mutating_the_base(self):
        base = {"stats": {"cache_ttl_seconds": 60}, "inventory": {"default_min_level": 0}}
        merged = merge_settings(base, {"stats": {"cache_ttl_seconds": 1}})
        assert merged["stats"] == {"cache_ttl_seconds": 1}
        assert merged["inventory"] == {"default_min_level": 0}
        assert base["stats"] == {"cache_ttl_seconds": 60}

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestPolicyBridge:
    def test_defaults_become_the_default_policy(self):
        policy = build_workflow_policy(get_active_settings())
        assert policy.global_roles == frozenset({Role.SUPER_ADMIN, Role.MANAGEMENT})
        assert Role.ADMIN_AFFAIRS in policy.order_admin_roles
        assert AssetStatus.DEFECTIVE in policy.legacy_transit_statuses
        assert policy.repair_voucher_id.width == 4
        assert policy.stats_cache_ttl_seconds == 60

    def test_unknown_role(self):
        settings = parse_settings({"access": {"global_roles": ["OVERLORD"]}})
        with pytest.raises(ValueError, match="global_roles"):
            build_workflow_policy(settings)

    def test_unknown_status(self):
        settings = parse_settings({"workflow": {"legacy_transit_statuses": ["BROKEN"]}})
        with pytest.raises(ValueError, match="legacy_transit_statuses"):
            build_workflow_policy(settings)

    def test_transit_status_cannot_be_a_legacy_start(self):
        settings = parse_settings({"workflow": {"legacy_transit_statuses": ["IN_TRANSIT"]}})
        with pytest.raises(ValueError):
            build_workflow_policy(settings)

    def test_identifier_prefix_must_be_alphanumeric(self):
        settings = parse_settings(
            {"identifiers": {"transfer_order": {"prefix": "T-O", "width": 3}}}
        )
        with pytest.raises(ValueError):
            build_workflow_policy(settings)
