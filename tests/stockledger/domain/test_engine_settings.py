"""Tests for engine settings resolution."""

from datetime import timedelta

import pytest

from stockledger.settings import EngineSettings, load_settings


class TestFromMapping:
    def test_defaults_when_table_is_empty(self):
        settings = EngineSettings.from_mapping({})
        assert settings == EngineSettings()
        assert settings.reservation_ttl == timedelta(minutes=15)

    def test_table_values_are_used(self):
        settings = EngineSettings.from_mapping({"BULK_CHUNK_SIZE": 5, "RESERVATION_TTL_MINUTES": 30})
        assert settings.bulk_chunk_size == 5
        assert settings.reservation_ttl == timedelta(minutes=30)

    def test_environment_overrides_table(self, monkeypatch):
        monkeypatch.setenv("STOCKLEDGER_LEDGER_MAX_ATTEMPTS", "9")
        monkeypatch.setenv("STOCKLEDGER_SWEEPER_INTERVAL_SECONDS", "2.5")
        settings = EngineSettings.from_mapping({"LEDGER_MAX_ATTEMPTS": 3})
        assert settings.ledger_max_attempts == 9
        assert settings.sweeper_interval_seconds == 2.5

    def test_fractional_reservation_ttl(self, monkeypatch):
        monkeypatch.setenv("STOCKLEDGER_RESERVATION_TTL_MINUTES", "0.5")
        assert EngineSettings.from_mapping({}).reservation_ttl == timedelta(seconds=30)

    def test_whole_number_written_as_float_for_integer_key(self, monkeypatch):
        monkeypatch.setenv("STOCKLEDGER_BULK_CHUNK_SIZE", "20.0")
        settings = EngineSettings.from_mapping({})
        assert settings.bulk_chunk_size == 20
        assert isinstance(settings.bulk_chunk_size, int)

    def test_fraction_for_integer_key_names_the_key(self, monkeypatch):
        monkeypatch.setenv("STOCKLEDGER_LEDGER_MAX_ATTEMPTS", "2.5")
        with pytest.raises(ValueError, match="STOCKLEDGER_LEDGER_MAX_ATTEMPTS='2.5' must be a whole number"):
            EngineSettings.from_mapping({})

    def test_non_numeric_value_names_the_key(self, monkeypatch):
        monkeypatch.setenv("STOCKLEDGER_SWEEPER_INTERVAL_SECONDS", "soon")
        with pytest.raises(ValueError, match="STOCKLEDGER_SWEEPER_INTERVAL_SECONDS='soon' is not a number"):
            EngineSettings.from_mapping({})


class TestLoadSettings:
    def test_reads_domain_configuration(self):
        settings = load_settings()
        assert settings.reservation_ttl_minutes == 15
        assert settings.bulk_max_items == 100
        assert settings.default_low_stock_threshold == 10
