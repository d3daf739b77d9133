"""Tests for feed definitions and runtime settings."""

import pytest

from feedsync.config import SyncSettings, get_feed_definitions, parse_mapping_rules
from feedsync.errors import ConfigurationError


class TestParseMappingRules:
    """Tests for the ``source=target|...`` mapping syntax."""

    def test_parses_pairs_in_order(self):
        rules = parse_mapping_rules("ext_Brand=Hersteller|ext_EAN=europäische Artikelnummer EAN")
        assert rules == [
            ("ext_Brand", "Hersteller"),
            ("ext_EAN", "europäische Artikelnummer EAN"),
        ]

    def test_trims_whitespace(self):
        assert parse_mapping_rules("  a = b  |  c=d ") == [("a", "b"), ("c", "d")]

    def test_ignores_malformed_pairs(self):
        assert parse_mapping_rules("nonsense||=x|y=|a=b") == [("a", "b")]

    def test_empty_string(self):
        assert parse_mapping_rules("") == []
        assert parse_mapping_rules(None) == []


class TestGetFeedDefinitions:
    """Tests for FEED_URL_<n> discovery."""

    def test_orders_by_numeric_index(self):
        env = {
            "FEED_URL_10": "https://example.com/ten.csv",
            "FEED_URL_2": "https://example.com/two.csv",
            "FEED_ID_2": "TWO",
            "FEED_ID_10": "TEN",
        }
        feeds = get_feed_definitions(env)
        assert [f.identifier for f in feeds] == ["TWO", "TEN"]
        assert [f.index for f in feeds] == [2, 10]

    def test_defaults_identifier_and_mapping(self):
        feeds = get_feed_definitions({"FEED_URL_3": "https://example.com/feed.csv"})
        assert len(feeds) == 1
        assert feeds[0].identifier == "FEED3"
        assert feeds[0].mapping_rules == ()
        assert feeds[0].default_manufacturer is None

    def test_reads_mapping_and_default_manufacturer(self):
        env = {
            "FEED_URL_1": "https://example.com/feed.csv",
            "FEED_ID_1": "F1",
            "FEED_MAPPING_1": "a=b",
            "FEED_DEFAULT_MANUFACTURER_1": " Acme ",
        }
        feed = get_feed_definitions(env)[0]
        assert feed.mapping_rules == (("a", "b"),)
        assert feed.default_manufacturer == "Acme"

    def test_ignores_empty_urls_and_unrelated_keys(self):
        env = {"FEED_URL_1": "  ", "FEED_URL_X": "https://example.com", "OTHER": "1"}
        assert get_feed_definitions(env) == []


class TestSyncSettings:
    """Tests for SyncSettings.from_env."""

    def test_defaults(self):
        settings = SyncSettings.from_env({})
        assert settings.vat_divisor == 1.19
        assert settings.sales_channel_name == "Storefront"
        assert settings.deeplink_field == "real_productlink"
        assert settings.shipping_field == "shipping_general"
        assert settings.default_manufacturer == "Default Hersteller"
        assert settings.openai_model == "gpt-4o-mini"

    def test_overrides(self):
        settings = SyncSettings.from_env({
            "SHOPWARE_API_URL": "https://shop.example.com/",
            "VAT_DIVISOR": "1,07",
            "CUSTOM_FIELD_DEEPLINK": "my_link",
            "PRODUCT_STOCK": "5",
        })
        assert settings.shopware_api_url == "https://shop.example.com"
        assert settings.vat_divisor == pytest.approx(1.07)
        assert settings.deeplink_field == "my_link"
        assert settings.stock == 5

    @pytest.mark.parametrize("value", ["abc", "0", "-1.19"])
    def test_invalid_vat_divisor(self, value):
        with pytest.raises(ConfigurationError):
            SyncSettings.from_env({"VAT_DIVISOR": value})

    def test_require_catalog_credentials(self):
        with pytest.raises(ConfigurationError, match="SHOPWARE_CLIENT_SECRET"):
            SyncSettings.from_env({
                "SHOPWARE_API_URL": "https://shop.example.com",
                "SHOPWARE_CLIENT_ID": "id",
            }).require_catalog_credentials()
