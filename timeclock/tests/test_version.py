"""
Tests for version endpoint
"""
from fastapi import status
from timeclock.core.constants import SERVICE_NAME


def test_version_endpoint_returns_version_and_clock(client):
    """Test that version endpoint returns version information and the organisation clock"""
    response = client.get("/api/v1/version")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()

    assert data["service"] == SERVICE_NAME
    assert "version" in data
    assert data["env"] in ["local", "staging", "prod"]
    assert data["time_zone_offset_minutes"] == 420
