"""Test configuration and fixtures"""

import pytest
from unittest.mock import Mock

import settings


@pytest.fixture
def download_dir(tmp_path, monkeypatch):
    """Point the download library at a temporary directory"""
    target = tmp_path / "downloads"
    target.mkdir()
    monkeypatch.setattr(settings, "DOWNLOAD_DIR", str(target))
    return target


@pytest.fixture
def sample_cache_dir(tmp_path, monkeypatch):
    """Point the sample cache at a temporary directory"""
    target = tmp_path / "samples"
    monkeypatch.setattr(settings, "SAMPLE_CACHE_DIR", str(target))
    return target


@pytest.fixture
def client():
    """FastAPI test client for the backend app"""
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


@pytest.fixture
def make_response():
    """Factory for stand-ins of requests.Response"""

    def _make(status_code=200, json_data=None, text=""):
        response = Mock()
        response.status_code = status_code
        response.text = text
        if json_data is None:
            response.json.side_effect = ValueError("no json")
        else:
            response.json.return_value = json_data
        return response

    return _make
