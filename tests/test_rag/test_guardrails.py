"""Tests for retrieval guardrails."""

from storechat.rag.guardrails import (
    DEFAULT_RETRIEVAL_POLICY,
    permissive_policy,
    sanitize_source_types,
    strict_policy,
    validate_retrieval_request,
)
from tests.conftest import SITE_ID, TENANT_ID


class TestValidateRetrievalRequest:

    def test_strict_rejects_unknown_type(self):
        policy = strict_policy(["product", "page", "policy"])
        result = validate_retrieval_request(TENANT_ID, SITE_ID, ["faq"], policy)

        assert not result.valid
        assert "faq" in result.error
        assert result.rejected_types == ["faq"]

    def test_strict_fails_whole_request(self):
        result = validate_retrieval_request(TENANT_ID, SITE_ID, ["product", "faq"], strict_policy(["product"]))
        assert not result.valid
        assert result.allowed_types == []

    def test_missing_scope_invalid_regardless_of_policy(self):
        for policy in (DEFAULT_RETRIEVAL_POLICY, permissive_policy()):
            result = validate_retrieval_request("", "site-1", [], policy)
            assert not result.valid
            assert "tenant_id" in result.error

    def test_empty_request_defaults_to_policy_set(self):
        result = validate_retrieval_request(TENANT_ID, SITE_ID, [], strict_policy(["product", "policy"]))
        assert result.valid
        assert result.allowed_types == ["product", "policy"]

    def test_valid_subset_deduplicated(self):
        result = validate_retrieval_request(TENANT_ID, SITE_ID, ["page", "page", "product"])
        assert result.allowed_types == ["page", "product"]


class TestSanitizeSourceTypes:

    def test_drops_unknown_and_duplicates(self):
        assert sanitize_source_types(["faq", "product", "page", "product"]) == ["product", "page"]

    def test_respects_policy(self):
        assert sanitize_source_types(["product", "page"], strict_policy(["page"])) == ["page"]

    def test_none_is_empty(self):
        assert sanitize_source_types(None) == []
