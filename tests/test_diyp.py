"""
Tests: DIYP / EPG-info query endpoints and document downloads
"""
import gzip

import pytest
from fastapi.testclient import TestClient

from epg_proxy.errors import UpstreamStatusError
from epg_proxy.lookup import ResilientLookup, set_lookup
from epg_proxy.main import app

from conftest import PRIMARY_URL, SCENARIO_XML, ScriptedFetcher, make_settings

client = TestClient(app)


@pytest.fixture
def scenario_lookup(clock):
    fetcher = ScriptedFetcher({PRIMARY_URL: SCENARIO_XML})
    lookup = ResilientLookup(make_settings(), clock=clock, fetcher=fetcher)
    set_lookup(lookup)
    yield lookup
    set_lookup(None)


def test_diyp_returns_programs(scenario_lookup):
    """Test the success payload shape"""
    response = client.get("/epg/diyp?ch=CCTV1&date=2024-01-15")
    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, max-age=3600"

    data = response.json()
    assert data["code"] == 200
    assert data["channel_id"] == "cctv1.example"
    assert data["channel_name"] == "CCTV1"
    assert data["date"] == "2024-01-15"
    assert data["icon"] == "https://img.example.com/cctv1.png"
    assert data["url"] == "http://testserver/epg/diyp"
    assert data["epg_data"] == [
        {"start": "06:30", "end": "07:00", "title": "Morning News", "desc": ""}
    ]


@pytest.mark.parametrize("param", ["ch", "channel", "id"])
def test_channel_param_aliases(scenario_lookup, param):
    """Test that ch, channel and id are equivalent"""
    response = client.get(f"/epg/epginfo?{param}=cctv1&date=2024-01-15")
    assert response.status_code == 200
    assert response.json()["channel_id"] == "cctv1.example"


def test_trailing_slash_is_accepted(scenario_lookup):
    response = client.get("/epg/diyp/?ch=CCTV1&date=2024-01-15")
    assert response.status_code == 200
    assert response.json()["url"] == "http://testserver/epg/diyp/"


@pytest.mark.parametrize("query", ["ch=CCTV1", "date=2024-01-15", ""])
def test_missing_params_is_a_caller_error(scenario_lookup, query):
    """Test that missing channel or date returns 400, not 404"""
    response = client.get(f"/epg/diyp?{query}")
    assert response.status_code == 400
    data = response.json()
    assert data["code"] == 400
    assert "Missing params" in data["message"]


def test_unknown_channel_returns_not_found(scenario_lookup):
    response = client.get("/epg/diyp?ch=Nope&date=2024-01-15")
    assert response.status_code == 404
    data = response.json()
    assert data["code"] == 404
    assert data["debug_info"] == {"channel": "Nope", "date": "2024-01-15"}


def test_resolved_channel_without_programs_reports_channel(scenario_lookup):
    """Channel exists but nothing airs on the date"""
    response = client.get("/epg/diyp?ch=CCTV1&date=2024-01-16")
    assert response.status_code == 404
    debug = response.json()["debug_info"]
    assert debug["channel_id"] == "cctv1.example"
    assert debug["channel_name"] == "CCTV1"
    assert debug["date"] == "2024-01-16"


def test_fetch_failure_is_not_propagated(clock):
    fetcher = ScriptedFetcher({PRIMARY_URL: UpstreamStatusError(500)})
    set_lookup(ResilientLookup(make_settings(), clock=clock, fetcher=fetcher))
    try:
        response = client.get("/epg/diyp?ch=CCTV1&date=2024-01-15")
    finally:
        set_lookup(None)
    assert response.status_code == 404


def test_unconfigured_source(clock):
    set_lookup(ResilientLookup(make_settings(epg_url=None), clock=clock, fetcher=ScriptedFetcher()))
    try:
        response = client.get("/epg/diyp?ch=CCTV1&date=2024-01-15")
    finally:
        set_lookup(None)
    assert response.status_code == 503
    assert response.json()["code"] == 503


def test_unhandled_error_maps_to_500(clock):
    fetcher = ScriptedFetcher({PRIMARY_URL: RuntimeError("disk on fire")})
    set_lookup(ResilientLookup(make_settings(), clock=clock, fetcher=fetcher))
    try:
        response = TestClient(app, raise_server_exceptions=False).get(
            "/epg/diyp?ch=CCTV1&date=2024-01-15"
        )
    finally:
        set_lookup(None)
    assert response.status_code == 500
    assert response.json()["message"] == "Server Error: disk on fire"


# =============================================================================
# Downloads
# =============================================================================

def test_download_xml(scenario_lookup):
    response = client.get("/epg/epg.xml")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert response.text == SCENARIO_XML


def test_download_gz(scenario_lookup):
    response = client.get("/epg/epg.xml.gz")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/gzip"
    assert gzip.decompress(response.content).decode("utf-8") == SCENARIO_XML


def test_download_failure_returns_502(clock):
    fetcher = ScriptedFetcher({PRIMARY_URL: UpstreamStatusError(503)})
    set_lookup(ResilientLookup(make_settings(), clock=clock, fetcher=fetcher))
    try:
        response = client.get("/epg/epg.xml")
    finally:
        set_lookup(None)
    assert response.status_code == 502
    assert response.text == "Download Error: Status 503"
