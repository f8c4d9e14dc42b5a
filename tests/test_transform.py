"""
FlightLedger - Ledger payload preparation tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from flightledger.core.errors import EncryptionConfigError, SnapshotValidationError
from flightledger.services.crypto import decompress_snapshot, decrypt_string, decrypt_values
from flightledger.services.transform import (
    IDENTITY_CLEARTEXT_INDICES,
    apply_status_effects,
    build_flight_data,
    build_marketing_arrays,
    build_status_data,
    build_utc_times,
    prepare_ledger_payload,
)

from conftest import ENCRYPTION_KEY, make_key, make_snapshot


class TestArrays:
    def test_flight_data_layout(self):
        snapshot = make_snapshot("out")
        assert build_flight_data(snapshot) == [
            "123",
            "2026-10-17",
            "UA",
            "Newark",
            "San Francisco",
            "EWR",
            "SFO",
            "United Airlines",
            "C71",
            "F12",
            "OUT",
            "Boeing 737-900",
        ]

    def test_operating_airline_falls_back_to_carrier(self):
        assert build_flight_data(make_snapshot(operating_airline=""))[7] == "UA"

    def test_utc_times_layout(self):
        snapshot = make_snapshot(arrival_delay_minutes=12, departure_delay_minutes=0)
        times = build_utc_times(snapshot)
        assert len(times) == 9
        assert times[4] == "2026-10-17T20:30:00Z"
        assert times[5] == "2026-10-17T15:00:00Z"
        assert times[6:] == ["12", "0", "5"]

    def test_status_data_layout(self):
        snapshot = make_snapshot("OFF", status_description="In Flight", out_utc="a", off_utc="b")
        assert build_status_data(snapshot) == ["OFF", "In Flight", "", "", "a", "b", "", ""]

    def test_marketing_arrays_equal_length(self):
        codes, numbers = build_marketing_arrays(make_snapshot())
        assert codes == ["LH"]
        assert numbers == ["7601"]


class TestStatusEffects:
    def test_out_timestamp_defaults_to_now(self):
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        snapshot = apply_status_effects(make_snapshot("OUT"))
        stamped = datetime.fromisoformat(snapshot.out_utc.replace("Z", "+00:00"))
        assert stamped >= before
        assert snapshot.actual_departure_utc == snapshot.out_utc

    def test_reported_timestamp_is_kept(self):
        snapshot = apply_status_effects(make_snapshot("ON", on_utc="2026-10-17T20:01:00Z"), now_iso="NOW")
        assert snapshot.on_utc == "2026-10-17T20:01:00Z"

    def test_in_sets_actual_arrival(self):
        snapshot = apply_status_effects(make_snapshot("IN"), now_iso="2026-10-17T20:40:00Z")
        assert snapshot.in_utc == "2026-10-17T20:40:00Z"
        assert snapshot.actual_arrival_utc == "2026-10-17T20:40:00Z"

    def test_cancel_sets_flag(self):
        assert apply_status_effects(make_snapshot("CNCL")).is_canceled

    def test_returns_set_flags(self):
        assert apply_status_effects(make_snapshot("RTBL")).is_returned_to_gate
        assert apply_status_effects(make_snapshot("RTFL")).is_returned_to_airport

    def test_divert_moves_arrival_airport(self):
        snapshot = apply_status_effects(make_snapshot("DVRT", diverted_to="PHL"))
        assert snapshot.is_diverted
        assert snapshot.arrival_airport == "PHL"

    def test_description_defaults_from_table(self):
        assert apply_status_effects(make_snapshot("OFF")).status_description == "In Flight"
        kept = apply_status_effects(make_snapshot("OFF", status_description="Airborne"))
        assert kept.status_description == "Airborne"


class TestPrepareLedgerPayload:
    def test_identity_fields_stay_cleartext(self):
        snapshot = make_snapshot("OUT", out_utc="2026-10-17T15:05:00Z")
        payload = prepare_ledger_payload(snapshot, ENCRYPTION_KEY)
        plain = build_flight_data(snapshot)

        for i, value in enumerate(payload.flight_data):
            if i in IDENTITY_CLEARTEXT_INDICES:
                assert value == plain[i]
            else:
                assert value != plain[i]

    def test_every_encrypted_field_decrypts_to_cleartext(self):
        snapshot = make_snapshot("OUT", out_utc="2026-10-17T15:05:00Z", departure_delay_minutes=5)
        payload = prepare_ledger_payload(snapshot, ENCRYPTION_KEY)

        assert decrypt_values(payload.flight_data, ENCRYPTION_KEY) == build_flight_data(snapshot)
        assert decrypt_values(payload.utc_times, ENCRYPTION_KEY) == build_utc_times(snapshot)
        assert decrypt_values(payload.status_data, ENCRYPTION_KEY) == build_status_data(snapshot)
        assert decrypt_values(payload.marketing_airline_codes, ENCRYPTION_KEY) == ["LH"]
        assert decrypt_values(payload.marketing_flight_numbers, ENCRYPTION_KEY) == ["7601"]

    def test_event_time_is_latest_phase(self):
        snapshot = make_snapshot("ON", out_utc="t-out", off_utc="t-off", on_utc="t-on")
        payload = prepare_ledger_payload(snapshot, ENCRYPTION_KEY)
        assert decrypt_string(payload.event_time, ENCRYPTION_KEY) == "t-on"

    def test_snapshot_blob_round_trips(self):
        snapshot = make_snapshot("OUT")
        payload = prepare_ledger_payload(snapshot, ENCRYPTION_KEY)
        assert decompress_snapshot(payload.compressed_snapshot) == snapshot.model_dump(mode="json")

    def test_status_code_kept_in_cleartext_locally(self):
        payload = prepare_ledger_payload(make_snapshot("OFF"), ENCRYPTION_KEY)
        assert payload.status_code == "OFF"

    def test_explicit_key_is_used(self):
        key = make_key(arrival_airport="EWR")
        snapshot = apply_status_effects(make_snapshot("DVRT", diverted_to="PHL"))
        payload = prepare_ledger_payload(snapshot, ENCRYPTION_KEY, key=key)
        assert payload.key == key

    def test_31_byte_key_rejected(self):
        with pytest.raises(EncryptionConfigError):
            prepare_ledger_payload(make_snapshot("OUT"), "k" * 31)

    def test_key_checked_before_snapshot(self):
        with pytest.raises(EncryptionConfigError):
            prepare_ledger_payload(make_snapshot("OUT", flight_number=""), "k" * 31)

    def test_missing_identity_fields(self):
        snapshot = make_snapshot("OUT", flight_number="", departure_date="")
        with pytest.raises(SnapshotValidationError) as exc:
            prepare_ledger_payload(snapshot, ENCRYPTION_KEY)
        assert exc.value.missing == ["flight_number", "departure_date"]
