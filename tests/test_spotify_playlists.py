"""Test Spotify playlist creation from mentions"""

import pytest
from fastapi import HTTPException
from unittest.mock import MagicMock

import spotify_playlists
from mentions import MentionCandidate
from spotify_playlists import create_playlist_from_mentions, find_track_uri, playlist_name_for

NEVERMIND = MentionCandidate(title="Nevermind", artist="Nirvana")
BLINDING_LIGHTS = MentionCandidate(title="Blinding Lights", artist="The Weeknd")
UNKNOWN = MentionCandidate(title="Nothing Here", artist="Nobody")


@pytest.fixture
def spotify(monkeypatch, make_response):
    """Fake Spotify Web API routed on URL and query"""
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append(("GET", url, params))
        if url.endswith("/search"):
            if params["q"] == "album:Nevermind artist:Nirvana":
                return make_response(json_data={"albums": {"items": [{"id": "alb1"}]}})
            if params["q"] == "track:Blinding Lights artist:The Weeknd":
                return make_response(json_data={"tracks": {"items": [{"uri": "spotify:track:bl"}]}})
            return make_response(json_data={params["type"] + "s": {"items": []}})
        if url.endswith("/albums/alb1/tracks"):
            return make_response(json_data={"items": [{"uri": "spotify:track:smells"}]})
        return make_response(status_code=404)

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        calls.append((method, url, kwargs.get("json")))
        if url.endswith("/me"):
            return make_response(json_data={"id": "user1"})
        if url.endswith("/users/user1/playlists"):
            return make_response(
                status_code=201,
                json_data={"id": "pl1", "external_urls": {"spotify": "https://open.spotify.com/playlist/pl1"}},
            )
        if url.endswith("/playlists/pl1/tracks"):
            return make_response(status_code=201, json_data={"snapshot_id": "s1"})
        return make_response(status_code=500)

    monkeypatch.setattr(spotify_playlists.requests, "get", fake_get)
    monkeypatch.setattr(spotify_playlists.requests, "request", fake_request)
    return calls


class TestFindTrackUri:
    """Test resolving a mention to a track"""

    def test_album_then_first_track(self, spotify):
        assert find_track_uri("tok", NEVERMIND) == "spotify:track:smells"

    def test_track_search_fallback(self, spotify):
        """Titles that are tracks fall back to a track search"""
        assert find_track_uri("tok", BLINDING_LIGHTS) == "spotify:track:bl"

    def test_unresolved(self, spotify):
        assert find_track_uri("tok", UNKNOWN) is None

    @pytest.mark.parametrize(
        "search_body, tracks_body",
        [
            ([], []),
            ({"albums": []}, {"items": "nope"}),
            ({"albums": {"items": ["alb1"]}}, {"items": [None]}),
            ("text", 42),
        ],
    )
    def test_unexpected_json_shapes(self, monkeypatch, make_response, search_body, tracks_body):
        """Valid JSON of the wrong shape resolves to nothing instead of raising"""

        def fake_get(url, params=None, headers=None, timeout=None):
            if url.endswith("/search"):
                return make_response(json_data=search_body)
            return make_response(json_data=tracks_body)

        monkeypatch.setattr(spotify_playlists.requests, "get", fake_get)
        assert find_track_uri("tok", NEVERMIND) is None

    def test_non_dict_album_tracks(self, monkeypatch, make_response):
        """A track listing that is not an object falls back to the track search"""

        def fake_get(url, params=None, headers=None, timeout=None):
            if url.endswith("/search") and params["type"] == "album":
                return make_response(json_data={"albums": {"items": [{"id": "alb1"}]}})
            if url.endswith("/search"):
                return make_response(json_data={"tracks": {"items": [{"uri": "spotify:track:t1"}]}})
            return make_response(json_data=["spotify:track:smells"])

        monkeypatch.setattr(spotify_playlists.requests, "get", fake_get)
        assert find_track_uri("tok", NEVERMIND) == "spotify:track:t1"


class TestCreatePlaylist:
    """Test the full playlist flow"""

    def test_creates_private_playlist(self, spotify):
        result = create_playlist_from_mentions(
            "tok", [NEVERMIND, BLINDING_LIGHTS, UNKNOWN], source_url="https://www.pitchfork.com/best"
        )

        assert result == {
            "playlist_id": "pl1",
            "url": "https://open.spotify.com/playlist/pl1",
            "name": "MusicFinder: Parsed from pitchfork.com",
            "track_count": 2,
            "missing": [{"artist": "Nobody", "album": "Nothing Here"}],
        }
        create = next(c for c in spotify if c[1].endswith("/users/user1/playlists"))
        assert create[2]["public"] is False
        added = next(c for c in spotify if c[1].endswith("/playlists/pl1/tracks"))
        assert added[2] == {"uris": ["spotify:track:smells", "spotify:track:bl"]}

    def test_custom_name_and_no_tracks(self, spotify):
        """A playlist is still created when nothing resolves"""
        result = create_playlist_from_mentions("tok", [UNKNOWN], source_url="", name="Crate digging")
        assert result["name"] == "Crate digging"
        assert result["track_count"] == 0
        assert not any(c[1].endswith("/playlists/pl1/tracks") for c in spotify)

    def test_rejected_token(self, monkeypatch, make_response):
        """A 401 from Spotify surfaces as a 401"""
        monkeypatch.setattr(
            spotify_playlists.requests, "request", MagicMock(return_value=make_response(status_code=401))
        )
        with pytest.raises(HTTPException) as exc:
            create_playlist_from_mentions("bad", [NEVERMIND], source_url="https://example.com")
        assert exc.value.status_code == 401

    def test_tracks_added_in_chunks(self, monkeypatch, spotify):
        """Spotify accepts at most 100 URIs per request"""
        monkeypatch.setattr(spotify_playlists, "find_track_uri", lambda token, m: f"spotify:track:{m.title}")
        mentions = [MentionCandidate(title=f"t{i}", artist="a") for i in range(150)]

        result = create_playlist_from_mentions("tok", mentions, source_url="https://example.com")

        adds = [c for c in spotify if c[1].endswith("/playlists/pl1/tracks")]
        assert result["track_count"] == 150
        assert [len(c[2]["uris"]) for c in adds] == [100, 50]


def test_playlist_name_for():
    assert playlist_name_for("https://www.youtube.com/watch?v=abc") == "MusicFinder: Parsed from youtube.com"
    assert playlist_name_for("") == "MusicFinder: Parsed from text"
