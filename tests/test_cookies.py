"""Tests for cookie categorization and deletion selection."""

from __future__ import annotations

import pytest
from conftest import cookie

from cleantrail.cleanup import cookies as cookie_rules
from cleantrail.data import loader

RULES = [("session", "necessary"), ("_ga", "analytics"), ("track", "analytics"), ("ide", "advertising")]


class TestCategorizeCookie:
    def test_first_match_wins(self) -> None:
        assert cookie_rules.categorize_cookie("track_session", RULES) == "necessary"

    def test_case_insensitive(self) -> None:
        assert cookie_rules.categorize_cookie("_GA_123", RULES) == "analytics"

    def test_uncategorized(self) -> None:
        assert cookie_rules.categorize_cookie("prefs", RULES) == "uncategorized"

    def test_default_rules(self) -> None:
        rules = list(loader.DEFAULT_COOKIE_CATEGORIES)
        assert cookie_rules.categorize_cookie("prefs", rules) == "uncategorized"
        assert cookie_rules.categorize_cookie("sid", rules) == "necessary"


class TestWhitelist:
    def test_site_entry(self) -> None:
        assert cookie_rules.is_site_whitelisted("example.com", ["example.com"])

    def test_cookie_entry_does_not_whitelist_site(self) -> None:
        assert not cookie_rules.is_site_whitelisted("example.com", ["example.com|prefs"])

    def test_cookie_entry(self) -> None:
        assert cookie_rules.is_cookie_whitelisted("example.com", "prefs", ["example.com|prefs"])
        assert not cookie_rules.is_cookie_whitelisted("example.com", "other", ["example.com|prefs"])

    def test_site_entry_covers_every_cookie(self) -> None:
        assert cookie_rules.is_cookie_whitelisted("example.com", "anything", ["example.com"])


class TestCookiesForHost:
    def test_exact_host_only(self) -> None:
        cookies = [cookie("a", "example.com"), cookie("b", ".example.com"), cookie("c", "sub.example.com")]
        assert [c.name for c in cookie_rules.cookies_for_host(cookies, "example.com")] == ["a", "b"]


class TestSelectForDeletion:
    def test_necessary_never_selected(self) -> None:
        selected = cookie_rules.select_for_deletion([cookie("sessionid"), cookie("_ga")], [], RULES)
        assert [c.name for c in selected] == ["_ga"]

    def test_whitelisted_cookie_skipped(self) -> None:
        selected = cookie_rules.select_for_deletion(
            [cookie("_ga"), cookie("ide")],
            ["example.com|ide"],
            RULES,
        )
        assert [c.name for c in selected] == ["_ga"]

    @pytest.mark.parametrize("whitelist", [[], ["other.com"], ["example.com|_ga"]])
    def test_necessary_survives_any_whitelist(self, whitelist: list[str]) -> None:
        selected = cookie_rules.select_for_deletion([cookie("csrf_session")], whitelist, RULES)
        assert selected == []
