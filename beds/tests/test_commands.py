from io import StringIO

import pytest
from django.core.management import call_command

from beds.services.cache import inventory_key, resolution_cache

from .fakes import ADMISSION_TAG, MORTUARY_TAG, paged, visit


@pytest.mark.django_db
def test_refresh_bed_caches_warms_every_tag(wards):
    wards.visit_pages = paged([visit('p1', 'Jane')])
    out = StringIO()
    call_command('refresh_bed_caches', stdout=out, stderr=StringIO())
    assert 'Refreshed 3 keys' in out.getvalue()
    assert resolution_cache.get(inventory_key(ADMISSION_TAG)) is not None
    assert resolution_cache.get(inventory_key(MORTUARY_TAG)) is not None
    assert wards.count('visits_page') == 1


@pytest.mark.django_db
def test_refresh_reports_failing_locations(wards):
    wards.failing_locations.add('ward-a')
    err = StringIO()
    call_command('refresh_bed_caches', '--skip-eligibility', stdout=StringIO(), stderr=err)
    assert 'Ward A' in err.getvalue()
    assert wards.count('visits_page') == 0
