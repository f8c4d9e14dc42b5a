"""
FlightLedger - External flight-data adapter

Fetches flight status from the provider and parses the nested, loosely-typed
response into a FlightSnapshot. This is the only place that knows the
provider's response shape.

Outcomes:
- FlightSnapshot: flight found
- None: provider answered but has no operational segment for the flight
- AdapterError: provider unreachable, timed out, or returned an error
"""

import logging
from typing import Any, Optional

import httpx

from flightledger.core.config import Settings
from flightledger.core.errors import AdapterError
from flightledger.models.flight import FlightSnapshot, FlightStatus, MarketingSegment

logger = logging.getLogger(__name__)

CANCELLED_CODES = {"CNCL", "CNL", "CANCELLED"}
IRREGULAR_CODES = {FlightStatus.RTBL.value, FlightStatus.RTFL.value, FlightStatus.DVRT.value}

# Characteristic indicator → status, most advanced phase first
PHASE_INDICATORS = (
    ("FltInInd", FlightStatus.IN.value),
    ("FltOnInd", FlightStatus.ON.value),
    ("FltOffInd", FlightStatus.OFF.value),
    ("FltOutInd", FlightStatus.OUT.value),
)


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def _dict(value: Any, field: str) -> dict:
    """Nested provider object; absent is {}, any other shape is a malformed response."""
    if not value:
        return {}
    if not isinstance(value, dict):
        raise AdapterError(f"Flight API returned a malformed {field}")
    return value


def _list(value: Any, field: str) -> list:
    if not value:
        return []
    if not isinstance(value, list):
        raise AdapterError(f"Flight API returned a malformed {field}")
    return value


def _first(value: Any, field: str) -> dict:
    items = _list(value, field)
    return _dict(items[0], field) if items else {}


def _find_status(statuses: list[dict], status_type: str) -> dict:
    for status in statuses:
        if status.get("StatusType") == status_type:
            return status
    return {}


def _derive_status_code(segment: dict, leg_status: dict) -> str:
    leg_code = _str(leg_status.get("Code")).upper()
    indicators = {
        c.get("Code"): _str(c.get("Value")) == "1"
        for c in _list(segment.get("Characteristic"), "Characteristic")
        if isinstance(c, dict)
    }

    if leg_code in CANCELLED_CODES or indicators.get("FltCnclInd"):
        return FlightStatus.CNCL.value
    if leg_code in IRREGULAR_CODES:
        return leg_code
    for indicator, code in PHASE_INDICATORS:
        if indicators.get(indicator):
            return code
    return FlightStatus.NDPT.value


def parse_flight_status(response: dict) -> Optional[FlightSnapshot]:
    """
    Parse a provider `flightStatusResp` body into a FlightSnapshot.

    Returns None when the response carries an Error block or no operational
    segment ("flight not found"). Raises AdapterError when a nested value has
    the wrong type.
    """
    if not isinstance(response, dict) or response.get("Error"):
        return None

    flight = _dict(response.get("Flight"), "Flight")
    leg = _first(response.get("FlightLegs"), "FlightLegs")
    operational = _first(leg.get("OperationalFlightSegments"), "OperationalFlightSegments")
    scheduled = _first(leg.get("ScheduledFlightSegments"), "ScheduledFlightSegments")

    if not flight or not operational:
        return None

    statuses = [s for s in _list(operational.get("FlightStatuses"), "FlightStatuses") if isinstance(s, dict)]
    leg_status = _find_status(statuses, "LegStatus") or _find_status(statuses, "FlightStatus")

    departure_airport = _dict(operational.get("DepartureAirport"), "DepartureAirport")
    arrival_airport = _dict(operational.get("ArrivalAirport"), "ArrivalAirport")
    operating_airline = _dict(operational.get("OperatingAirline"), "OperatingAirline")
    equipment = _dict(operational.get("Equipment") or scheduled.get("Equipment"), "Equipment")

    status_code = _derive_status_code(operational, leg_status)

    segments = [
        MarketingSegment(
            airline_code=_str(s.get("MarketingAirlineCode")),
            flight_number=_str(s.get("FlightNumber")),
        )
        for s in _list(scheduled.get("MarketedFlightSegment"), "MarketedFlightSegment")
        if isinstance(s, dict)
    ]

    return FlightSnapshot(
        flight_number=_str(flight.get("FlightNumber")),
        carrier_code=_str(operating_airline.get("IATACode") or scheduled.get("OperatingAirlineCode")),
        departure_date=_str(flight.get("FlightOriginationDate") or flight.get("DepartureDate")),
        departure_airport=_str(departure_airport.get("IATACode")),
        arrival_airport=_str(arrival_airport.get("IATACode")),
        departure_city=_str(_dict(departure_airport.get("Address"), "Address").get("City")),
        arrival_city=_str(_dict(arrival_airport.get("Address"), "Address").get("City")),
        operating_airline=_str(operating_airline.get("Name") or operating_airline.get("IATACode")),
        departure_gate=_str(operational.get("DepartureGate")),
        arrival_gate=_str(operational.get("ArrivalGate")),
        equipment_model=_str(_dict(equipment.get("Model"), "Model").get("Description")),
        baggage_claim=_str(operational.get("ArrivalBagClaimUnit") or operational.get("BagClaim")),
        status_code=status_code,
        status_description=_str(leg_status.get("Description")),
        actual_arrival_utc=_str(operational.get("ActualArrivalUTCTime")),
        actual_departure_utc=_str(operational.get("ActualDepartureUTCTime")),
        estimated_arrival_utc=_str(operational.get("EstimatedArrivalUTCTime")),
        estimated_departure_utc=_str(operational.get("EstimatedDepartureUTCTime")),
        scheduled_arrival_utc=_str(operational.get("ArrivalUTCDateTime") or scheduled.get("ArrivalUTCDateTime")),
        scheduled_departure_utc=_str(
            operational.get("DepartureUTCDateTime") or scheduled.get("DepartureUTCDateTime")
        ),
        decision_time_utc=_str(operational.get("DecisionTimeUTC")),
        out_utc=_str(operational.get("OutUTCTime")),
        off_utc=_str(operational.get("OffUTCTime")),
        on_utc=_str(operational.get("OnUTCTime")),
        in_utc=_str(operational.get("InUTCTime")),
        arrival_delay_minutes=_int(
            operational.get("ArrivalDelayMinutes") or operational.get("EstimatedArrivalDelayMinutes")
        ),
        departure_delay_minutes=_int(
            operational.get("DepartureDelayMinutes") or operational.get("EstimatedDepartureDelayMinutes")
        ),
        is_canceled=status_code == FlightStatus.CNCL.value,
        is_diverted=status_code == FlightStatus.DVRT.value,
        diverted_to=_str(_dict(operational.get("DivertedAirport"), "DivertedAirport").get("IATACode")),
        marketing_segments=segments,
    )


class FlightDataAdapter:
    """HTTP client for the external flight-status provider."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.url = settings.FLIGHT_API_URL
        self.client = client or httpx.AsyncClient(timeout=settings.FLIGHT_API_TIMEOUT_SECONDS)

    async def fetch(
        self,
        flight_number: str,
        departure_date: str,
        departure_airport: str,
        arrival_airport: Optional[str] = None,
    ) -> Optional[FlightSnapshot]:
        params = {
            "fltNbr": flight_number,
            "fltLegSchedDepDt": departure_date,
            "departure": departure_airport,
        }
        if arrival_airport:
            params["arrival"] = arrival_airport

        logger.info(f"[FLIGHT-API] Fetching flight {flight_number} for {departure_date} from {departure_airport}")

        try:
            response = await self.client.get(self.url, params=params, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            raise AdapterError(f"Flight API timed out for {flight_number}") from e
        except httpx.RequestError as e:
            raise AdapterError(f"Flight API unavailable: {e}") from e

        if response.status_code != 200:
            raise AdapterError(
                f"Flight API returned {response.status_code} for {flight_number}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AdapterError(f"Flight API returned invalid JSON for {flight_number}") from e
        if not isinstance(data, dict):
            raise AdapterError(f"Flight API returned an unexpected body for {flight_number}")

        info = _first(data.get("info"), "info")
        if _str(info.get("cd")) != "200":
            raise AdapterError(f"Flight API call failed: {info.get('msg') or 'Unknown error'}")

        try:
            snapshot = parse_flight_status(_dict(data.get("flightStatusResp"), "flightStatusResp"))
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            raise AdapterError(f"Flight API returned an unexpected body for {flight_number}: {e}") from e
        if snapshot is None:
            logger.info(f"[FLIGHT-API] Flight {flight_number} not found for {departure_date}")
        return snapshot

    async def close(self) -> None:
        await self.client.aclose()
