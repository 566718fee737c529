import sys
from pathlib import Path

import pytest


SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

import speak_weather  # noqa: E402


POINTS_URL = "https://api.weather.gov/points/40.4406,-79.9959"
STATIONS_URL = "https://api.weather.gov/gridpoints/PBZ/72,62/stations"
OBSERVATION_URL = "https://api.weather.gov/stations/KPIT/observations/latest"
FORECAST_URL = "https://api.weather.gov/gridpoints/PBZ/72,62/forecast/hourly"
ALERTS_URL = "https://api.weather.gov/alerts/active?point=40.4406,-79.9959"


class FakeFetch:
    """Dictionary-backed stand-in for fetch_json that records requested URLs"""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, url):
        self.calls.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


def quantity(value, unit="wmoUnit:degC"):
    return {"value": value, "unitCode": unit, "qualityControl": "V"}


@pytest.fixture
def settings():
    return speak_weather.Settings()


@pytest.fixture
def points_doc():
    return {"properties": {"observationStations": STATIONS_URL, "gridId": "PBZ"}}


@pytest.fixture
def stations_doc():
    return {
        "features": [
            {
                "id": "https://api.weather.gov/stations/KPIT",
                "properties": {"stationIdentifier": "KPIT", "name": "Pittsburgh International Airport"},
            },
            {
                "id": "https://api.weather.gov/stations/KAGC",
                "properties": {"stationIdentifier": "KAGC"},
            },
        ]
    }


@pytest.fixture
def observation_doc():
    return {
        "properties": {
            "textDescription": "Mostly Cloudy",
            "temperature": quantity(21.7),
            "windSpeed": quantity(5, "wmoUnit:m_s-1"),
            "windDirection": quantity(225, "wmoUnit:degree_(angle)"),
            "relativeHumidity": quantity(63.4, "wmoUnit:percent"),
        }
    }


def make_period(number, **overrides):
    period = {
        "number": number,
        "name": "",
        "startTime": f"2026-10-19T{number % 24:02d}:00:00-04:00",
        "temperature": 50 + number,
        "temperatureUnit": "F",
        "probabilityOfPrecipitation": {"unitCode": "wmoUnit:percent", "value": 10},
        "relativeHumidity": {"unitCode": "wmoUnit:percent", "value": 70},
        "windSpeed": "5 mph",
        "windDirection": "SW",
        "shortForecast": "Partly Cloudy",
        "detailedForecast": "",
    }
    period.update(overrides)
    return period


@pytest.fixture
def fake_fetch(points_doc, stations_doc, observation_doc):
    return FakeFetch({
        POINTS_URL: points_doc,
        STATIONS_URL: stations_doc,
        OBSERVATION_URL: observation_doc,
        FORECAST_URL: {"properties": {"periods": [make_period(n) for n in range(1, 4)]}},
        ALERTS_URL: {"features": []},
    })
