"""Test sample-detection lookups and their disk cache"""

import json

import pytest
import requests
from fastapi import HTTPException
from unittest.mock import MagicMock

import sample_lookup
import settings
from sample_lookup import lookup_samples, parse_sample_entries


class TestParseEntries:
    """Test normalisation of API payloads"""

    def test_samples_key(self):
        payload = {
            "samples": [
                {"type": "sample", "title": "Amen, Brother", "artist": "The Winstons", "year": "1969"},
                {"relation": "interpolation", "track": "Funky Drummer", "artist": {"name": "James Brown"},
                 "release_date": "1970-03-01"},
                {"artist": "No Title"},
                "junk",
            ]
        }
        assert parse_sample_entries(payload) == [
            {"type": "sample", "title": "Amen, Brother", "artist": "The Winstons", "year": 1969},
            {"type": "interpolation", "title": "Funky Drummer", "artist": "James Brown", "year": 1970},
        ]

    def test_results_key_and_list(self):
        assert parse_sample_entries({"results": [{"name": "Blue"}]}) == [
            {"type": "sample", "title": "Blue", "artist": None, "year": None}
        ]
        assert parse_sample_entries([{"title": "Blue"}])[0]["title"] == "Blue"
        assert parse_sample_entries("nope") == []


class TestLookupSamples:
    """Test live, cached and demo lookups"""

    def test_missing_params(self):
        with pytest.raises(HTTPException) as exc:
            lookup_samples("Nirvana", " ")
        assert exc.value.status_code == 400

    def test_demo_data_without_key(self, monkeypatch, sample_cache_dir):
        """No API key means flagged demo data and no cache writes"""
        monkeypatch.delenv("RAPIDAPI_KEY", raising=False)
        result = lookup_samples("Nirvana", "Smells Like Teen Spirit")

        assert result["mock"] is True
        assert result["samples"]
        assert not sample_cache_dir.exists()

    def test_live_lookup_is_cached(self, monkeypatch, sample_cache_dir, make_response):
        """A live answer is stored and served from disk next time"""
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        get = MagicMock(return_value=make_response(json_data={"samples": [{"title": "Impeach the President"}]}))
        monkeypatch.setattr(sample_lookup.requests, "get", get)

        first = lookup_samples("Nas", "The World Is Yours")
        second = lookup_samples("NAS", "the world is yours")

        assert first["cached"] is False and first["mock"] is False
        assert second["cached"] is True
        assert second["samples"] == first["samples"]
        assert get.call_count == 1
        assert get.call_args.kwargs["headers"]["X-RapidAPI-Key"] == "key"
        assert len(list(sample_cache_dir.glob("*.json"))) == 1

    def test_expired_cache_refetches(self, monkeypatch, sample_cache_dir, make_response):
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        monkeypatch.setattr(settings, "SAMPLE_CACHE_TTL", 0)
        get = MagicMock(return_value=make_response(json_data={"samples": []}))
        monkeypatch.setattr(sample_lookup.requests, "get", get)

        lookup_samples("Nas", "Halftime")
        cache_file = next(sample_cache_dir.glob("*.json"))
        cache_file.write_text(json.dumps({"cached_at": 0, "samples": [{"title": "stale"}]}))
        result = lookup_samples("Nas", "Halftime")

        assert result["cached"] is False
        assert get.call_count == 2

    def test_corrupt_cache_ignored(self, monkeypatch, sample_cache_dir, make_response):
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        monkeypatch.setattr(sample_lookup.requests, "get", MagicMock(return_value=make_response(json_data=[])))
        sample_cache_dir.mkdir()
        with open(sample_lookup._cache_path("Nas", "Halftime"), "w", encoding="utf-8") as f:
            f.write("{oops")

        assert lookup_samples("Nas", "Halftime")["cached"] is False

    def test_api_failure_is_502(self, monkeypatch, sample_cache_dir, make_response):
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        monkeypatch.setattr(sample_lookup.requests, "get", MagicMock(return_value=make_response(status_code=429)))
        with pytest.raises(HTTPException) as exc:
            lookup_samples("Nas", "Halftime")
        assert exc.value.status_code == 502

        monkeypatch.setattr(sample_lookup.requests, "get", MagicMock(side_effect=requests.ConnectionError("down")))
        with pytest.raises(HTTPException) as exc:
            lookup_samples("Nas", "Halftime")
        assert exc.value.status_code == 502

    def test_non_numeric_timestamp_refetches(self, monkeypatch, sample_cache_dir, make_response):
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        get = MagicMock(return_value=make_response(json_data={"samples": []}))
        monkeypatch.setattr(sample_lookup.requests, "get", get)
        sample_cache_dir.mkdir()
        with open(sample_lookup._cache_path("Nas", "Halftime"), "w", encoding="utf-8") as f:
            json.dump({"cached_at": "yesterday", "samples": [{"title": "stale"}]}, f)

        result = lookup_samples("Nas", "Halftime")

        assert result["cached"] is False
        assert get.call_count == 1


class TestCacheWrites:
    """Test that cache write failures never fail a live lookup"""

    def test_unwritable_cache_dir(self, monkeypatch, sample_cache_dir, make_response):
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        get = MagicMock(return_value=make_response(json_data={"samples": [{"title": "Impeach the President"}]}))
        monkeypatch.setattr(sample_lookup.requests, "get", get)
        sample_cache_dir.write_text("not a directory")

        result = lookup_samples("Nas", "The World Is Yours")

        assert result["cached"] is False
        assert result["samples"][0]["title"] == "Impeach the President"

    def test_failed_write_leaves_no_temp_files(self, monkeypatch, sample_cache_dir, make_response):
        monkeypatch.setenv("RAPIDAPI_KEY", "key")
        monkeypatch.setattr(
            sample_lookup.requests, "get", MagicMock(return_value=make_response(json_data={"samples": []}))
        )
        monkeypatch.setattr(sample_lookup.json, "dump", MagicMock(side_effect=OSError("disk full")))

        result = lookup_samples("Nas", "Halftime")

        assert result["samples"] == []
        assert list(sample_cache_dir.iterdir()) == []
