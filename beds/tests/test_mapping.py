"""Decoding of upstream payloads into canonical records."""
from datetime import datetime, timezone as dt_timezone

import pytest

from beds.services.mapping import (
    OCCUPIED,
    SENTINEL,
    SOURCE_EXTERNAL,
    Location,
    StartTimeDecodeError,
    candidate_from_external,
    candidate_from_visit,
    decode_start_tuple,
    dedupe_candidates,
    resource_from_payload,
)

from .fakes import ADMISSION_ENCOUNTER, visit

UTC = dt_timezone.utc


class TestDecodeStartTuple:
    """The external list sends ``[year, month, day, hour, minute]`` with a zero-based month.

    These cases pin that convention down: a change in the upstream
    encoding has to break them.
    """

    def test_month_is_zero_based(self):
        assert decode_start_tuple([2024, 2, 15, 9, 30], tz=UTC) == datetime(2024, 3, 15, 9, 30, tzinfo=UTC)

    def test_january_and_december(self):
        assert decode_start_tuple([2024, 0, 1, 0, 0], tz=UTC).month == 1
        assert decode_start_tuple([2023, 11, 31, 23, 59], tz=UTC) == datetime(2023, 12, 31, 23, 59, tzinfo=UTC)

    def test_month_twelve_is_rejected_not_rolled_over(self):
        with pytest.raises(StartTimeDecodeError):
            decode_start_tuple([2024, 12, 1, 0, 0], tz=UTC)

    @pytest.mark.parametrize('value', [
        [2024, 1, 0, 10, 0],    # day 0
        [2024, 1, 30, 10, 0],   # 30 February
        [2024, 0, 1, 24, 0],    # hour 24
        [2024, 0, 1, 10, 60],   # minute 60
        [2024, -1, 1, 10, 0],
        [2024, 0, 1, 10],
        'not a tuple',
        None,
        [2024, 'x', 1, 10, 0],
    ])
    def test_invalid_values_raise(self, value):
        with pytest.raises(StartTimeDecodeError):
            decode_start_tuple(value, tz=UTC)

    def test_defaults_to_project_time_zone(self, settings):
        settings.TIME_ZONE = 'Africa/Nairobi'
        decoded = decode_start_tuple([2024, 2, 15, 9, 30])
        assert decoded.utcoffset().total_seconds() == 3 * 3600
        assert (decoded.year, decoded.month, decoded.day, decoded.hour, decoded.minute) == (2024, 3, 15, 9, 30)


class TestCandidateFromVisit:
    def test_maps_patient_fields_and_admission_encounter(self):
        c = candidate_from_visit(visit('p1', 'Jane Doe'), encounter_type_uuid=ADMISSION_ENCOUNTER)
        assert c.subject_id == 'p1'
        assert c.display_name == 'Jane Doe'
        assert c.identifier == 'MRN-0001'
        assert c.age == 40
        assert c.visit_type == 'Inpatient'
        assert c.source_encounter_id == 'enc-p1'
        assert c.has_encounter
        assert c.visit_start_time is not None and c.visit_start_time.utcoffset().total_seconds() == 3 * 3600

    def test_no_admission_encounter(self):
        c = candidate_from_visit(visit('p1', 'Jane', encounter=False), encounter_type_uuid=ADMISSION_ENCOUNTER)
        assert c.source_encounter_id == ''
        assert not c.has_encounter

    def test_other_encounter_types_do_not_count(self):
        c = candidate_from_visit(visit('p1', 'Jane'), encounter_type_uuid='some-other-type')
        assert not c.has_encounter

    def test_missing_identifier_uses_sentinel(self):
        c = candidate_from_visit(visit('p1', 'Jane', identifier=None))
        assert c.identifier == SENTINEL

    def test_configured_identifiers_and_attributes_default_independently(self):
        v = visit('p1', 'Jane')
        v['patient']['person']['attributes'] = [
            {'value': '0700000000', 'attributeType': {'uuid': 'a1', 'display': 'Telephone Number'}},
        ]
        c = candidate_from_visit(
            v,
            identifiers=[
                {'identifierName': 'OpenMRS ID', 'key': 'openmrsId'},
                {'identifierName': 'National ID', 'key': 'nationalId'},
            ],
            attributes=[
                {'display': 'Telephone Number', 'key': 'phone'},
                {'display': 'Next of kin', 'key': 'kin'},
            ],
        )
        assert c.identifier == 'MRN-0001'
        assert c.extra == {'openmrsId': 'MRN-0001', 'nationalId': SENTINEL, 'phone': '0700000000', 'kin': SENTINEL}


def test_candidate_from_external_record():
    record = {
        'patientUuid': 'p9', 'name': 'John', 'idNumber': '', 'age': '51', 'gender': 'M',
        'visitType': 'Inpatient', 'admissionEncounterUuid': 'enc-9', 'locationTo': 'ward-b',
    }
    c = candidate_from_external(record, None)
    assert c.source == SOURCE_EXTERNAL
    assert c.identifier == SENTINEL
    assert c.age == 51
    assert c.has_encounter
    assert c.location_id == 'ward-b'
    assert c.visit_start_time is None


def test_dedupe_keeps_first_occurrence_in_order():
    a = candidate_from_visit(visit('p1', 'First'))
    b = candidate_from_visit(visit('p2', 'Second'))
    a2 = candidate_from_visit(visit('p1', 'Duplicate'))
    assert [c.display_name for c in dedupe_candidates([a, b, a2])] == ['First', 'Second']


def test_resource_owned_by_fetching_location():
    ward = Location('ward-a', 'Ward A')
    payload = {'id': '7', 'uuid': 'u7', 'bedNumber': 'A-0007', 'status': 'occupied',
               'bedType': {'name': 'ICU'}, 'location': {'uuid': 'elsewhere'}}
    r = resource_from_payload(payload, ward)
    assert r.id == 7
    assert r.location is ward
    assert r.status == OCCUPIED
    assert r.bed_type == 'ICU'
