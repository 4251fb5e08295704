"""Tests for the shared origin validator."""

from __future__ import annotations

from pathlib import Path

import pytest

from chatrelay.security.origins import (
    BROAD_METHODS,
    WIDGET_METHODS,
    OriginValidator,
    normalize_origin,
    origin_matches,
)
from chatrelay.store.chatbots import ChatbotStore
from tests.conftest import WIDGET_ORIGIN, make_chatbot, make_settings


class TestOriginMatching:

    def test_trailing_slash_stripped_once(self) -> None:
        assert normalize_origin("https://a.com/") == "https://a.com"
        assert normalize_origin("https://a.com//") == "https://a.com/"

    def test_exact_pattern(self) -> None:
        assert origin_matches("https://a.com", "https://a.com/")
        assert not origin_matches("https://a.com:8443", "https://a.com")

    @pytest.mark.parametrize("origin", [
        "https://a.example.com",
        "https://deep.sub.example.com",
        "http://example.com",
        "https://example.com",
    ])
    def test_wildcard_admits_subdomains_and_apex(self, origin: str) -> None:
        assert origin_matches(origin, "*.example.com")

    def test_wildcard_rejects_lookalike_domain(self) -> None:
        assert not origin_matches("https://notexample.com", "*.example.com")
        assert not origin_matches("https://example.com.evil.io", "*.example.com")


class TestOriginValidator:

    def test_no_origin_always_allowed(self, validator: OriginValidator) -> None:
        assert validator.check(None, "c1").allowed
        assert validator.check(None, "missing").allowed
        assert validator.check("", None).allowed

    def test_listed_origin_allowed_with_widget_methods(self, validator: OriginValidator) -> None:
        decision = validator.check(WIDGET_ORIGIN, "c1")
        assert decision.allowed
        assert decision.allow_origin == WIDGET_ORIGIN
        assert decision.methods == WIDGET_METHODS

    def test_origin_with_trailing_slash_allowed(self, validator: OriginValidator) -> None:
        assert validator.check(WIDGET_ORIGIN + "/", "c1").allowed

    def test_unlisted_origin_rejected_403(self, validator: OriginValidator) -> None:
        decision = validator.check("https://evil.example.org", "c1")
        assert not decision.allowed
        assert decision.status_code == 403
        assert decision.reason == "Origin not allowed"

    def test_unknown_chatbot_rejected_404(self, validator: OriginValidator) -> None:
        decision = validator.check(WIDGET_ORIGIN, "nope")
        assert not decision.allowed
        assert decision.status_code == 404
        assert decision.reason == "Chatbot not found"

    def test_wildcard_pattern_from_store(self, tmp_path: Path, store: ChatbotStore) -> None:
        store.save_chatbot(make_chatbot(id="wild", allowed_origins=["*.example.com"]))
        validator = OriginValidator(make_settings(tmp_path), store)
        assert validator.check("https://a.example.com", "wild").allowed
        assert validator.check("http://example.com", "wild").allowed
        assert not validator.check("https://notexample.com", "wild").allowed

    def test_global_list_takes_precedence(self, tmp_path: Path, store: ChatbotStore) -> None:
        settings = make_settings(tmp_path, cors_allowed_origins=["https://ops.example.net/"])
        validator = OriginValidator(settings, store)
        decision = validator.check("https://ops.example.net", "unknown-bot")
        assert decision.allowed
        assert decision.methods == BROAD_METHODS

    def test_self_origin_exempt(self, validator: OriginValidator) -> None:
        assert validator.check("http://relay.local:7861", "c1").allowed

    def test_admin_origin_exempt_for_widget(self, tmp_path: Path, store: ChatbotStore) -> None:
        settings = make_settings(tmp_path, admin_origin="https://admin.example.net")
        validator = OriginValidator(settings, store)
        assert validator.check("https://admin.example.net", "c1").allowed
        # Exemption never rescues an unknown chatbot
        assert validator.check("https://admin.example.net", "nope").status_code == 404


class TestAdminSurface:

    def test_admin_origin_match(self, tmp_path: Path, store: ChatbotStore) -> None:
        settings = make_settings(
            tmp_path, environment="production", admin_origin="https://admin.example.net",
        )
        validator = OriginValidator(settings, store)
        decision = validator.check("https://admin.example.net", None)
        assert decision.allowed
        assert decision.methods == BROAD_METHODS

    def test_production_rejects_other_origins(self, tmp_path: Path, store: ChatbotStore) -> None:
        settings = make_settings(
            tmp_path, environment="production", admin_origin="https://admin.example.net",
        )
        validator = OriginValidator(settings, store)
        decision = validator.check("https://elsewhere.example.org", None)
        assert not decision.allowed
        assert decision.status_code == 403

    def test_non_production_is_permissive(self, validator: OriginValidator) -> None:
        assert validator.check("https://anything.example.org", None).allowed
