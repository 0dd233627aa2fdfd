import pytest
from django.core.cache import cache

from beds.services import openmrs

from .fakes import (
    ADMISSION_ENCOUNTER,
    ADMISSION_TAG,
    INPATIENT_VISIT,
    MORTUARY_TAG,
    FakeOpenMRS,
)


@pytest.fixture(autouse=True)
def bed_settings(settings):
    settings.ADMISSION_LOCATION_TAG_UUID = ADMISSION_TAG
    settings.MORTUARY_LOCATION_TAG_UUID = MORTUARY_TAG
    settings.INPATIENT_VISIT_UUID = INPATIENT_VISIT
    settings.ADMISSION_ENCOUNTER_TYPE_UUID = ADMISSION_ENCOUNTER
    settings.ELIGIBILITY_STRATEGY = 'visits'
    settings.PATIENT_LIST_FOR_ADMISSION_URL = ''
    settings.RESTRICT_WARD_ADMINISTRATION_TO_LOGIN_LOCATION = False
    settings.ACTIVE_VISIT_IDENTIFIERS = []
    settings.ACTIVE_VISIT_ATTRIBUTES = []
    settings.VISIT_PAGE_SIZE = 50
    return settings


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def fake():
    return FakeOpenMRS()


@pytest.fixture
def upstream(fake, monkeypatch):
    """Route every ``openmrs.get_client()`` call to the in-memory fake."""
    monkeypatch.setattr(openmrs, 'get_client', lambda: fake)
    return fake


@pytest.fixture
def wards(upstream):
    upstream.add_location(ADMISSION_TAG, 'ward-a', 'Ward A')
    upstream.add_location(ADMISSION_TAG, 'ward-b', 'Ward B')
    upstream.add_location(ADMISSION_TAG, 'ward-empty', 'Empty Ward')
    upstream.add_bed('ward-a', 1, 'A-0001')
    upstream.add_bed('ward-a', 2, 'A-0002', status='OCCUPIED')
    upstream.add_bed('ward-b', 3, 'B-0001')
    return upstream
