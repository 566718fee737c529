#!/usr/bin/env python3
"""
Speech-friendly NWS weather reader for a single configured point.
Prints plain sentences, one utterance per line, safe to pipe into espeak.

Sections, in order:
  - Intro line and current station observation (always)
  - Gridpoint forecast periods (only when DETAILED=1)
  - Active alerts for the point (always)

All settings come from environment variables (UPPERCASE or lowercase aliases),
optionally loaded from a local .env file. With SPEAK=1 the text is handed to
espeak directly instead of being printed.
"""

import sys
import os
import json
import re
import shlex
import shutil
import logging
import math
import functools
import subprocess
import http.client
import urllib.request
import urllib.error
from dataclasses import dataclass
from typing import Optional

from dateutil import parser as date_parser
from dotenv import load_dotenv

logger = logging.getLogger("speak_weather")

NWS_BASE_URL = "https://api.weather.gov"
NWS_ACCEPT = "application/geo+json, application/json;q=0.9,*/*;q=0.1"
REQUEST_TIMEOUT = 20
PREVIEW_CHARS = 800

MPS_TO_MPH = 2.2369362920544

DIRS_16 = ["N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
           "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW"]

DIR_WORDS = {
    "N": "North", "NNE": "North-northeast", "NE": "Northeast", "ENE": "East-northeast",
    "E": "East", "ESE": "East-southeast", "SE": "Southeast", "SSE": "South-southeast",
    "S": "South", "SSW": "South-southwest", "SW": "Southwest", "WSW": "West-southwest",
    "W": "West", "WNW": "West-northwest", "NW": "Northwest", "NNW": "North-northwest",
    "VRB": "Variable",
}

TRUE_WORDS = {"1", "true", "yes", "on"}
FALSE_WORDS = {"0", "false", "no", "off"}

USAGE = """Usage: speak_weather.py

All options are environment variables (UPPERCASE or lowercase):
  WFO, GRID_X, GRID_Y        NWS office and gridpoint (default PBZ 72,62)
  LAT, LON                   Point for observations and alerts
  FORECAST_PATH              Gridpoint resource (default forecast/hourly)
  PERIODS                    Forecast periods to read (default 6)
  DETAILED=1                 Include the forecast section
  FULL_ALERT_TEXT=1          Read alert details and instructions
  PLACE, REGION              Names used in the spoken intro
  NWS_UA                     User-Agent sent to api.weather.gov
  DEBUG=1                    Log requests to stderr
  VERBOSE=1                  Mirror spoken text to stderr
  SPEAK=1                    Speak with espeak instead of printing
  ESPEAK_BIN, ESPEAK_VOICE, ESPEAK_SPEED, ESPEAK_ARGS, ESPEAK_WAV

Examples:
  detailed=1 periods=6 ./speak_weather.py
  SPEAK=1 VERBOSE=1 ./speak_weather.py
  ./speak_weather.py | espeak -v en-us -s 155
"""


# ===== Errors =====

class WeatherError(Exception):
    """Fatal error for a run; carries an optional response preview"""

    def __init__(self, message, preview=""):
        super().__init__(message)
        self.preview = preview


class FetchError(WeatherError):
    """Transport failure or non-2xx response"""

    def __init__(self, url, status=None, preview="", reason=None):
        if status is not None:
            message = f"HTTP {status} fetching {url}"
        else:
            message = f"Network fetching {url}: {reason}"
        super().__init__(message, preview)
        self.url = url
        self.status = status


class ParseError(WeatherError):
    """Response body was not valid JSON"""

    def __init__(self, url, preview="", reason=None):
        super().__init__(f"Invalid JSON from {url}: {reason}", preview)
        self.url = url


class ConfigError(WeatherError):
    pass


class SpeechError(WeatherError):
    pass


# ===== Configuration =====

def _to_bool(value):
    lowered = value.strip().lower()
    if lowered in TRUE_WORDS:
        return True
    if lowered in FALSE_WORDS:
        return False
    raise ValueError(f"expected one of {sorted(TRUE_WORDS | FALSE_WORDS)}")


def _to_periods(value):
    return max(0, int(value))


# (field, canonical key, default, aliases, converter)
SETTING_RULES = (
    ("office", "WFO", "PBZ", ("wfo",), str),
    ("grid_x", "GRID_X", "72", ("grid_x", "gridx", "x"), int),
    ("grid_y", "GRID_Y", "62", ("grid_y", "gridy", "y"), int),
    ("lat", "LAT", "40.4406", ("lat",), float),
    ("lon", "LON", "-79.9959", ("lon", "lng"), float),
    ("forecast_path", "FORECAST_PATH", "forecast/hourly", ("forecast_path", "forecastpath"), str),
    ("periods", "PERIODS", "6", ("periods", "period"), _to_periods),
    ("detailed", "DETAILED", "0", ("detailed", "details", "detalled", "DETALLED"), _to_bool),
    ("full_alert_text", "FULL_ALERT_TEXT", "0",
     ("full_alert_text", "fullalert", "fullalerts", "alerts_full"), _to_bool),
    ("debug", "DEBUG", "0", ("debug",), _to_bool),
    ("verbose", "VERBOSE", "0", ("verbose",), _to_bool),
    ("speak", "SPEAK", "0", ("speak",), _to_bool),
    ("user_agent", "NWS_UA", "pit-tts/3.6 (contact: you@example.com)", ("user_agent", "ua"), str),
    ("place", "PLACE", "Pittsburgh", ("place", "city"), str),
    ("region", "REGION", "Pennsylvania", ("region", "state"), str),
    ("espeak_bin", "ESPEAK_BIN", "espeak", ("espeak_bin",), str),
    ("espeak_voice", "ESPEAK_VOICE", "en-us", ("espeak_voice", "voice"), str),
    ("espeak_speed", "ESPEAK_SPEED", "155", ("espeak_speed", "speed"), int),
    ("espeak_args", "ESPEAK_ARGS", "", ("espeak_args", "args"), str),
    ("espeak_wav", "ESPEAK_WAV", "", ("espeak_wav", "wav"), str),
)


@dataclass(frozen=True)
class Settings:
    office: str = "PBZ"
    grid_x: int = 72
    grid_y: int = 62
    lat: float = 40.4406
    lon: float = -79.9959
    forecast_path: str = "forecast/hourly"
    periods: int = 6
    detailed: bool = False
    full_alert_text: bool = False
    debug: bool = False
    verbose: bool = False
    speak: bool = False
    user_agent: str = "pit-tts/3.6 (contact: you@example.com)"
    place: str = "Pittsburgh"
    region: str = "Pennsylvania"
    espeak_bin: str = "espeak"
    espeak_voice: str = "en-us"
    espeak_speed: int = 155
    espeak_args: str = ""
    espeak_wav: str = ""


def pick_env(environ, key, default, aliases):
    """Return the first non-empty value among key and its aliases, else default"""
    for name in (key,) + tuple(aliases):
        value = environ.get(name, "")
        if value:
            return value
    return default


def load_settings(environ=None):
    """Build Settings from environment variables using SETTING_RULES"""
    if environ is None:
        environ = os.environ
    values = {}
    for name, key, default, aliases, convert in SETTING_RULES:
        raw = pick_env(environ, key, default, aliases)
        try:
            values[name] = convert(raw)
        except ValueError as e:
            raise ConfigError(f"Bad value for {key}: {raw!r} ({e})")
    return Settings(**values)


def setup_logging(debug=False, stream=None):
    """Send diagnostics to stderr, keeping stdout for spoken text only"""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


# ===== HTTP =====

def fetch_json(url, user_agent, timeout=REQUEST_TIMEOUT):
    """GET a JSON document from api.weather.gov"""
    req = urllib.request.Request(url, headers={
        'User-Agent': user_agent,
        'Accept': NWS_ACCEPT,
    })
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            raw = response.read()
            logger.debug(f"GET {url} -> HTTP {getattr(response, 'status', 200)}, bytes={len(raw)}")
    except urllib.error.HTTPError as e:
        body = e.read().decode('utf-8', errors='replace') if e.fp else ""
        raise FetchError(url, status=e.code, preview=body[:PREVIEW_CHARS]) from e
    except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
        raise FetchError(url, reason=e) from e

    text = raw.decode('utf-8', errors='replace')
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(url, preview=text[:PREVIEW_CHARS], reason=e) from e


# ===== Parsed responses =====

def _number(value):
    """Return value if it is a real number, otherwise None"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _quantity(props, key):
    """Extract the numeric value of an NWS {"value": ..., "unitCode": ...} object"""
    q = props.get(key)
    if not isinstance(q, dict):
        return None
    return _number(q.get('value'))


def _text(props, key):
    value = props.get(key)
    if not isinstance(value, str):
        return ""
    return value.strip()


def _properties(doc):
    props = doc.get('properties') if isinstance(doc, dict) else None
    return props if isinstance(props, dict) else {}


@dataclass
class Observation:
    description: str = ""
    temperature_c: Optional[float] = None
    wind_speed_mps: Optional[float] = None
    wind_direction_deg: Optional[float] = None
    relative_humidity_pct: Optional[float] = None

    @classmethod
    def from_json(cls, doc):
        props = _properties(doc)
        return cls(
            description=_text(props, 'textDescription'),
            temperature_c=_quantity(props, 'temperature'),
            wind_speed_mps=_quantity(props, 'windSpeed'),
            wind_direction_deg=_quantity(props, 'windDirection'),
            relative_humidity_pct=_quantity(props, 'relativeHumidity'),
        )


@dataclass
class ForecastPeriod:
    name: str = ""
    start_time: str = ""
    temperature: Optional[float] = None
    temperature_unit: str = ""
    short_forecast: str = ""
    wind_direction: str = ""
    wind_speed: str = ""
    detailed_forecast: str = ""
    precip_probability_pct: Optional[float] = None
    relative_humidity_pct: Optional[float] = None

    @classmethod
    def from_json(cls, period):
        if not isinstance(period, dict):
            period = {}
        return cls(
            name=_text(period, 'name'),
            start_time=_text(period, 'startTime'),
            temperature=_number(period.get('temperature')),
            temperature_unit=_text(period, 'temperatureUnit'),
            short_forecast=_text(period, 'shortForecast'),
            wind_direction=_text(period, 'windDirection'),
            wind_speed=_text(period, 'windSpeed'),
            detailed_forecast=_text(period, 'detailedForecast'),
            precip_probability_pct=_quantity(period, 'probabilityOfPrecipitation'),
            relative_humidity_pct=_quantity(period, 'relativeHumidity'),
        )


@dataclass
class Alert:
    event: str = "Alert"
    headline: str = ""
    description: str = ""
    instruction: str = ""

    @classmethod
    def from_json(cls, feature):
        props = _properties(feature)
        return cls(
            event=_text(props, 'event') or "Alert",
            headline=_text(props, 'headline'),
            description=_text(props, 'description'),
            instruction=_text(props, 'instruction'),
        )


def _features(doc):
    feats = doc.get('features') if isinstance(doc, dict) else None
    return feats if isinstance(feats, list) else []


def station_id_from_feature(feature):
    """Station id from properties.stationIdentifier, else parsed from the feature URL"""
    if not isinstance(feature, dict):
        return ""
    station_id = _text(_properties(feature), 'stationIdentifier')
    if not station_id:
        fid = _text(feature, 'id')
        if '/stations/' in fid:
            station_id = fid.split('/stations/')[-1].strip().strip('/')
    return station_id


# ===== Converters =====

def c_to_f(celsius):
    """Convert Celsius to whole degrees Fahrenheit"""
    return int(round(celsius * 9 / 5 + 32))


def mps_to_mph(mps):
    """Convert meters per second to whole miles per hour"""
    return int(round(mps * MPS_TO_MPH))


def deg_to_dir16(degrees):
    """Convert wind direction degrees to a 16-point compass abbreviation"""
    try:
        d = float(degrees) % 360.0
    except (TypeError, ValueError):
        return ""
    if not math.isfinite(d):
        return ""
    index = int(d / 22.5 + 0.5) % 16
    return DIRS_16[index]


def expand_wind_dir(wind_dir):
    """Spell out a compass abbreviation (SW -> Southwest, VRB -> Variable)"""
    d = (wind_dir or "").strip()
    if not d:
        return ""
    u = d.upper()
    if u in DIR_WORDS:
        return DIR_WORDS[u]
    if len(u) <= 3 and u.isalpha():
        return d.title()
    return d


def sanitize(text):
    """Make a line safe for a speech engine"""
    text = text.replace("°", " degrees ")
    return re.sub(r"\s+", " ", text).strip()


def fmt_temp(temp, unit):
    """Spoken temperature with the unit spelled out"""
    if temp is None:
        return None
    u = (unit or "").upper()
    if u == "F":
        return f"{temp} degrees Fahrenheit"
    if u == "C":
        return f"{temp} degrees Celsius"
    return f"{temp} {unit or ''}".strip()


def fmt_wind(wind_dir, wind_speed):
    """Spoken wind sentence, or None when no speed is given"""
    ws = (wind_speed or "").strip()
    if not ws:
        return None
    ws = ws.replace("mph", "miles per hour").replace("MPH", "miles per hour")
    d_words = expand_wind_dir(wind_dir)
    if d_words:
        return f"Wind from the {d_words} at {ws}."
    return f"Wind at {ws}."


def label_for_period(period):
    """Spoken label like 'Monday 3 PM', falling back to the period name"""
    if period.start_time:
        try:
            dt = date_parser.isoparse(period.start_time)
        except (ValueError, OverflowError):
            dt = None
        if dt is not None:
            return dt.strftime("%A %I %p").replace(" 0", " ").lstrip("0")
    return period.name or "Period"


# ===== Renderers =====

def render_intro(settings):
    place = ", ".join(p for p in (settings.place, settings.region) if p)
    yield f"{place} weather. NWS {settings.office} gridpoint {settings.grid_x},{settings.grid_y}."


def render_observation(obs, place):
    """Sentences for one observation; missing fields are skipped"""
    yield f"Current conditions near {place}."
    if obs.description:
        yield f"{obs.description}."
    if obs.temperature_c is not None:
        yield f"Temperature {c_to_f(obs.temperature_c)} degrees Fahrenheit."
    if obs.wind_speed_mps is not None:
        mph = mps_to_mph(obs.wind_speed_mps)
        d_abbr = deg_to_dir16(obs.wind_direction_deg) if obs.wind_direction_deg is not None else ""
        d_words = expand_wind_dir(d_abbr)
        if d_words:
            yield f"Wind from the {d_words} about {mph} miles per hour."
        else:
            yield f"Wind about {mph} miles per hour."
    if obs.relative_humidity_pct is not None:
        yield f"Humidity about {int(round(obs.relative_humidity_pct))} percent."


def render_current(fetch, settings):
    """Current conditions from the first observation station near the point"""
    points = fetch(f"{NWS_BASE_URL}/points/{settings.lat},{settings.lon}")
    stations_url = _text(_properties(points), 'observationStations')
    if not stations_url:
        yield "Current conditions: unavailable."
        return

    feats = _features(fetch(stations_url))
    station_id = station_id_from_feature(feats[0]) if feats else ""
    if not station_id:
        yield "Current conditions: unavailable."
        return

    obs = Observation.from_json(fetch(f"{NWS_BASE_URL}/stations/{station_id}/observations/latest"))
    yield from render_observation(obs, settings.place or "here")


def render_period(period):
    """One combined line for a forecast period"""
    parts = [f"{label_for_period(period)}."]
    if period.short_forecast:
        parts.append(f"{period.short_forecast}.")
    t = fmt_temp(period.temperature, period.temperature_unit)
    if t:
        parts.append(f"Temperature {t}.")
    w = fmt_wind(period.wind_direction, period.wind_speed)
    if w:
        parts.append(w)
    if period.precip_probability_pct is not None:
        parts.append(f"Chance of precipitation {int(round(period.precip_probability_pct))} percent.")
    if period.relative_humidity_pct is not None:
        parts.append(f"Humidity {int(round(period.relative_humidity_pct))} percent.")
    if period.detailed_forecast:
        parts.append(period.detailed_forecast)
    return " ".join(parts)


def render_forecast(fetch, settings):
    """Gridpoint forecast, one line per period"""
    path = settings.forecast_path.strip("/")
    url = f"{NWS_BASE_URL}/gridpoints/{settings.office}/{settings.grid_x},{settings.grid_y}/{path}"
    raw_periods = _properties(fetch(url)).get('periods')
    if not isinstance(raw_periods, list):
        raw_periods = []
    periods = [ForecastPeriod.from_json(p) for p in raw_periods[:settings.periods]]

    yield ""
    yield "Forecast."
    if not periods:
        yield "Forecast data unavailable."
        return
    for period in periods:
        yield render_period(period)


def render_alert(alert, full_text=False):
    """Event and headline, plus details and instructions in full-text mode"""
    chunk = f"{alert.event}. {alert.headline}"
    if full_text:
        if alert.description:
            chunk += f" Details: {alert.description}"
        if alert.instruction:
            chunk += f" Instructions: {alert.instruction}"
    return chunk


def render_alerts(fetch, settings):
    """Active alerts for the point, in the order the API returns them"""
    doc = fetch(f"{NWS_BASE_URL}/alerts/active?point={settings.lat},{settings.lon}")
    alerts = [Alert.from_json(f) for f in _features(doc)]

    yield ""
    if not alerts:
        yield "Alerts: none active."
        return
    yield f"Alerts: {len(alerts)} active."
    for alert in alerts:
        yield render_alert(alert, settings.full_alert_text)


def render_report(fetch, settings):
    """Full report as a lazy sequence of sanitized lines"""
    sections = [render_intro(settings), render_current(fetch, settings)]
    if settings.detailed:
        sections.append(render_forecast(fetch, settings))
    sections.append(render_alerts(fetch, settings))
    for section in sections:
        for line in section:
            yield sanitize(line)


# ===== Sinks =====

def print_lines(lines, verbose=False, stdout=None, stderr=None):
    """Write lines to stdout, mirroring to stderr when piped and verbose"""
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    mirror = verbose and not stdout.isatty()
    for line in lines:
        print(line, file=stdout, flush=True)
        if mirror:
            print(line, file=stderr, flush=True)


def espeak_command(settings):
    """Argument list for the espeak process"""
    binary = shutil.which(settings.espeak_bin)
    if not binary:
        raise SpeechError(f"{settings.espeak_bin} not found.")
    cmd = [binary, '-v', settings.espeak_voice, '-s', str(settings.espeak_speed)]
    cmd.extend(shlex.split(settings.espeak_args))
    if settings.espeak_wav:
        cmd.extend(['-w', settings.espeak_wav])
    return cmd


def speak_lines(lines, settings, stderr=None):
    """Pipe lines into espeak, optionally echoing them to stderr"""
    stderr = stderr or sys.stderr
    cmd = espeak_command(settings)
    logger.debug(f"Speaking with: {' '.join(cmd)}")
    proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, text=True, encoding='utf-8')
    broken_pipe = False
    try:
        for line in lines:
            try:
                proc.stdin.write(line + "\n")
                proc.stdin.flush()
            except BrokenPipeError:
                broken_pipe = True
                break
            if settings.verbose:
                print(line, file=stderr, flush=True)
    finally:
        try:
            proc.stdin.close()
        except BrokenPipeError:
            broken_pipe = True
        returncode = proc.wait()
    if returncode != 0:
        raise SpeechError(f"{settings.espeak_bin} exited with status {returncode}")
    if broken_pipe:
        raise SpeechError(f"{settings.espeak_bin} closed its input early")


# ===== Entry point =====

def report_error(error, stderr=None):
    """Print a fatal error and its response preview to stderr"""
    stderr = stderr or sys.stderr
    print(f"ERROR: {error}", file=stderr)
    if error.preview:
        print("Response preview:", file=stderr)
        print(error.preview, file=stderr)


def main(argv=None, environ=None):
    """Run one report; returns the process exit status"""
    argv = sys.argv[1:] if argv is None else argv
    if '-h' in argv or '--help' in argv:
        print(USAGE)
        return 0

    if environ is None:
        load_dotenv()
        environ = os.environ

    try:
        settings = load_settings(environ)
        setup_logging(settings.debug)
        fetch = functools.partial(fetch_json, user_agent=settings.user_agent)
        lines = render_report(fetch, settings)
        if settings.speak:
            speak_lines(lines, settings)
        else:
            print_lines(lines, verbose=settings.verbose)
    except WeatherError as e:
        report_error(e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
