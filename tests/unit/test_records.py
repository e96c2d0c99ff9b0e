"""
Unit tests for event records and table naming.

Tests cover:
- Snake case conversion and destination table names
- Value sanitising for JSONEachRow
- Row construction and structural columns
- Record validation
"""

import pytest

from indexer.chsync.records import (
    EventRecord,
    sanitize_value,
    table_name,
    to_snake_case,
)


class TestTableNaming:
    """Tests for destination table names."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Transfer", "transfer"),
            ("OwnershipTransferred", "ownership_transferred"),
            ("UniswapV3Pool", "uniswap_v3_pool"),
            ("ERC20Transfer", "erc20_transfer"),
            ("NFTMinted", "nft_minted"),
            ("already_snake", "already_snake"),
        ],
    )
    def test_to_snake_case(self, name, expected):
        """Camel and Pascal case convert to snake case."""
        assert to_snake_case(name) == expected

    def test_to_snake_case_rejects_non_string(self):
        """Non-string names are rejected."""
        with pytest.raises(TypeError):
            to_snake_case(42)

    def test_table_name_combines_origin_and_event(self):
        """Table name joins origin and event type."""
        assert table_name("UniswapV3Pool", "PoolCreated") == "uniswap_v3_pool_pool_created"

    def test_table_name_is_deterministic(self):
        """Same pair always yields the same table."""
        assert table_name("Vault", "Deposit") == table_name("Vault", "Deposit")


class TestSanitizeValue:
    """Tests for value sanitising."""

    def test_booleans_become_integers(self):
        assert sanitize_value(True) == 1
        assert sanitize_value(False) == 0

    def test_small_integers_unchanged(self):
        assert sanitize_value(42) == 42
        assert sanitize_value(-(2**63)) == -(2**63)

    def test_large_integers_become_strings(self):
        """Integers outside int64 are rendered as decimal strings."""
        assert sanitize_value(2**70) == str(2**70)
        assert sanitize_value(-(2**63) - 1) == str(-(2**63) - 1)

    def test_bytes_become_hex(self):
        assert sanitize_value(b"\x01\xff") == "0x01ff"

    def test_nested_structures(self):
        """Sequences and mappings are converted recursively."""
        value = {"amounts": (1, 2**64), "flags": [True, False], "inner": {"ok": True}}

        assert sanitize_value(value) == {
            "amounts": [1, str(2**64)],
            "flags": [1, 0],
            "inner": {"ok": 1},
        }

    def test_none_and_strings_unchanged(self):
        assert sanitize_value(None) is None
        assert sanitize_value("0xabc") == "0xabc"


class TestEventRecord:
    """Tests for EventRecord."""

    @pytest.fixture
    def record(self):
        return EventRecord(
            table="erc20_transfer",
            chain_id=1,
            block_number=18_000_000,
            log_index=7,
            fields={"from": "0xaaa", "to": "0xbbb", "value": 2**100},
            tx_hash="0x" + "ab" * 32,
            block_timestamp=1_700_000_000,
            src_address="0x" + "cd" * 20,
        )

    def test_surrogate_id(self, record):
        assert record.surrogate_id == "1_18000000_7"

    def test_to_row_prefixes_decoded_fields(self, record):
        """Decoded fields get the evt_ prefix."""
        row = record.to_row()

        assert row["evt_from"] == "0xaaa"
        assert row["evt_to"] == "0xbbb"
        assert row["evt_value"] == str(2**100)

    def test_to_row_structural_columns(self, record):
        """Structural columns come from the record."""
        row = record.to_row()

        assert row["id"] == "1_18000000_7"
        assert row["chain_id"] == 1
        assert row["block_number"] == 18_000_000
        assert row["log_index"] == 7
        assert row["tx_hash"] == record.tx_hash
        assert row["block_timestamp"] == 1_700_000_000
        assert row["log_address"] == record.src_address

    def test_decoded_fields_cannot_override_structure(self):
        """A decoded field named like a structural column stays prefixed."""
        record = EventRecord(
            table="t",
            chain_id=10,
            block_number=5,
            log_index=0,
            fields={"chain_id": 999, "id": "forged"},
        )

        row = record.to_row()

        assert row["chain_id"] == 10
        assert row["id"] == "10_5_0"
        assert row["evt_chain_id"] == 999
        assert row["evt_id"] == "forged"

    def test_fields_are_copied_and_read_only(self):
        """Later mutation of the source mapping is not observed."""
        fields = {"value": 1}
        record = EventRecord(table="t", chain_id=1, block_number=1, log_index=0, fields=fields)

        fields["value"] = 2

        assert record.fields["value"] == 1
        with pytest.raises(TypeError):
            record.fields["value"] = 3

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"table": ""},
            {"block_number": -1},
            {"block_number": 2**64},
            {"log_index": 2**32},
            {"chain_id": -5},
        ],
    )
    def test_invalid_records_rejected(self, kwargs):
        """Out-of-range structural values raise ValueError."""
        base = {"table": "t", "chain_id": 1, "block_number": 1, "log_index": 0}
        base.update(kwargs)

        with pytest.raises(ValueError):
            EventRecord(**base)
