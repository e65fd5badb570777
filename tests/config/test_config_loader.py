"""
Tests for YAML configuration loading.

Covers:
- Shipped defaults
- File selection and database URL override through the environment
- Missing sections and invalid values
- Deterministic checksum and the LEDGER_CONFIG_TRACE record
"""

from decimal import Decimal

import pytest
import yaml

from ledger_config import LedgerConfig, MatchingConfig, PostingConfig, get_active_config, load_config
from ledger_config.loader import (
    CONFIG_PATH_ENV,
    DATABASE_URL_ENV,
    DEFAULT_CONFIG_PATH,
    compute_checksum,
    load_yaml_file,
    parse_config,
)


@pytest.fixture
def config_data():
    return load_yaml_file(DEFAULT_CONFIG_PATH)


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="ledger.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


class TestDefaults:
    def test_shipped_defaults_match_dataclass_defaults(self):
        config = load_config(environ={})

        assert config == LedgerConfig()
        assert config.balance_tolerance == Decimal("0.01")
        assert isinstance(config.balance_tolerance, Decimal)
        assert config.matching.min_confidence == 80
        assert config.database.url == "sqlite:///:memory:"


class TestSources:
    def test_explicit_path(self, config_data, write_config):
        path = write_config({**config_data, "base_currency": "eur", "posting": {"reference_prefix": "GL"}})

        config = load_config(path, environ={})

        assert config.base_currency == "EUR"
        assert config.posting == PostingConfig(max_retry_attempts=3, reference_prefix="GL")

    def test_path_from_environment(self, config_data, write_config):
        path = write_config({**config_data, "matching": {"min_confidence": 95}})

        config = load_config(environ={CONFIG_PATH_ENV: str(path)})

        assert config.matching == MatchingConfig(min_confidence=95)

    def test_database_url_override(self):
        config = load_config(environ={DATABASE_URL_ENV: "postgresql://ledger@db/ledger"})

        assert config.database.url == "postgresql://ledger@db/ledger"
        assert config.database.echo is False

    def test_unquoted_tolerance_parsed_without_float_residue(self, config_data, write_config):
        path = write_config({**config_data, "balance_tolerance": 0.05})

        assert load_config(path, environ={}).balance_tolerance == Decimal("0.05")


class TestInvalid:
    def test_missing_section(self, config_data):
        del config_data["matching"]

        with pytest.raises(KeyError, match="matching"):
            parse_config(config_data)

    def test_unknown_currency(self, config_data):
        with pytest.raises(ValueError):
            parse_config({**config_data, "base_currency": "XXY"})

    @pytest.mark.parametrize(
        "section, values",
        [
            ("posting", {"max_retry_attempts": 0}),
            ("posting", {"reference_prefix": ""}),
            ("matching", {"min_confidence": 101}),
            ("matching", {"date_window_days": -1}),
        ],
    )
    def test_out_of_range_values(self, config_data, section, values):
        with pytest.raises(ValueError):
            parse_config({**config_data, section: values})

    @pytest.mark.parametrize("tolerance", ["0", "-0.01", "abc"])
    def test_bad_tolerance(self, config_data, tolerance):
        with pytest.raises(ValueError):
            parse_config({**config_data, "balance_tolerance": tolerance})

    def test_float_tolerance_rejected_in_code(self):
        with pytest.raises(ValueError):
            LedgerConfig(balance_tolerance=0.01)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", environ={})


class TestChecksum:
    def test_identical_content_identical_checksum(self, config_data, write_config):
        first = load_config(write_config(config_data, "a.yaml"), environ={})
        second = load_config(write_config(config_data, "b.yaml"), environ={})

        assert compute_checksum(first) == compute_checksum(second)

    def test_any_change_changes_checksum(self):
        assert compute_checksum(LedgerConfig()) != compute_checksum(
            LedgerConfig(matching=MatchingConfig(min_confidence=81))
        )

    def test_active_config_traced(self, captured_logs):
        config = get_active_config(DEFAULT_CONFIG_PATH)

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == compute_checksum(config)
        assert traces[0]["logger"] == "ledger_kernel.config"
