"""
Unit tests for upstream request classification.
"""

import json

import pytest

from service_tribute_cache.app.caching.models import ResourceType
from service_tribute_cache.app.interception.classifier import NOT_APPLICABLE, RequestClassifier
from shared.config import DEFAULT_UPSTREAM_HOSTS

API = "https://api.firehawkcrm.com"


class TestRequestClassifier:
    """Test cases for RequestClassifier."""

    @pytest.fixture
    def classifier(self):
        return RequestClassifier(DEFAULT_UPSTREAM_HOSTS)

    def test_entity_by_id(self, classifier):
        descriptor = classifier.classify(f"{API}/api/client/FIN123?teamGroupIndex=2&gallery=1")

        assert descriptor.resource_type == ResourceType.ENTITY_BY_ID
        assert descriptor.primary_id == "FIN123"
        assert descriptor.secondary_params == {"team_index": "2", "gallery": "1"}
        assert descriptor.entity_id == "FIN123"

    def test_entity_extra_flag(self, classifier):
        descriptor = classifier.classify(f"{API}/api/client/FIN123?tribute=1")
        assert descriptor.secondary_params == {"extra": "1"}

    def test_entity_by_number(self, classifier):
        descriptor = classifier.classify(f"{API}/api/client/file-number/FN-9")

        assert descriptor.resource_type == ResourceType.ENTITY_BY_NUMBER
        assert descriptor.primary_id == "FN-9"

    @pytest.mark.parametrize("subresource", ["messages", "trees", "donations"])
    def test_sub_resources(self, classifier, subresource):
        body = json.dumps({"page": 2})
        descriptor = classifier.classify(f"{API}/api/client/FIN123/{subresource}", "POST", body)

        assert descriptor.resource_type == ResourceType.ENTITY_SUB_RESOURCE
        assert descriptor.primary_id == "FIN123"
        assert descriptor.secondary_params == {"subresource": subresource}
        assert descriptor.raw_params == {"page": 2}

    def test_listing_reads_json_body(self, classifier):
        descriptor = classifier.classify(f"{API}/api/clients/", "POST", b'{"search": "smith", "page": 1}')

        assert descriptor.resource_type == ResourceType.ENTITY_LISTING
        assert descriptor.raw_params == {"search": "smith", "page": 1}
        assert descriptor.entity_id is None

    def test_counts(self, classifier):
        count = classifier.classify(f"{API}/api/tributes/count")
        sitemap_count = classifier.classify(f"{API}/api/tributes/sitemap-count")

        assert count.resource_type == ResourceType.COLLECTION_COUNT
        assert count.secondary_params == {"variant": "count"}
        assert sitemap_count.secondary_params == {"variant": "sitemap"}

    def test_sitemap_listing_requires_flag(self, classifier):
        sitemap = classifier.classify(f"{API}/api/tributes", "POST", {"sitemap": True, "page": 1})
        plain = classifier.classify(f"{API}/api/tributes", "POST", {"page": 1})

        assert sitemap.resource_type == ResourceType.SITEMAP_LISTING
        assert plain is NOT_APPLICABLE

    def test_subdomain_of_allowed_host(self, classifier):
        url = "https://australia-southeast1-firehawk-ivc-dev.cloudfunctions.net/api/client/X1"
        assert classifier.classify(url).resource_type == ResourceType.ENTITY_BY_ID
        assert classifier.is_upstream_url("https://new-fn.cloudfunctions.net/x")

    @pytest.mark.parametrize("url", [
        "https://example.com/api/client/FIN123",
        "https://notcloudfunctions.net/api/client/FIN123",
        "https://api.firehawkcrm.com.evil.io/api/client/FIN123",
    ])
    def test_unknown_hosts_not_applicable(self, classifier, url):
        assert classifier.classify(url) is NOT_APPLICABLE

    def test_unmatched_path_not_applicable(self, classifier):
        assert classifier.classify(f"{API}/api/settings") is NOT_APPLICABLE

    @pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH"])
    def test_mutating_methods_not_applicable(self, classifier, method):
        assert classifier.classify(f"{API}/api/client/FIN123", method) is NOT_APPLICABLE

    def test_malformed_body_not_applicable(self, classifier):
        assert classifier.classify(f"{API}/api/clients/", "POST", b"{not json") is NOT_APPLICABLE

    @pytest.mark.parametrize("url", ["", "not a url", "://", None])
    def test_malformed_url_not_applicable(self, classifier, url):
        assert classifier.classify(url) is NOT_APPLICABLE
