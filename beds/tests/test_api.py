"""
Integration tests for the bed management JSON API.

These tests exercise the endpoints end to end through Django REST
Framework's APIClient, with the upstream OpenMRS client replaced by the
in-memory fake from ``fakes.py``.

To run the tests:

```
pytest -q beds/tests
```
"""
from unittest import mock

from django.core.cache import cache
from django.test import override_settings
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from beds.exceptions import TransientError
from beds.models import Allocation, AuditEvent, User

from .fakes import (
    ADMISSION_ENCOUNTER,
    ADMISSION_TAG,
    INPATIENT_VISIT,
    MORTUARY_TAG,
    FakeOpenMRS,
    paged,
    visit,
)


@override_settings(
    ADMISSION_LOCATION_TAG_UUID=ADMISSION_TAG,
    MORTUARY_LOCATION_TAG_UUID=MORTUARY_TAG,
    INPATIENT_VISIT_UUID=INPATIENT_VISIT,
    ADMISSION_ENCOUNTER_TYPE_UUID=ADMISSION_ENCOUNTER,
    ELIGIBILITY_STRATEGY='visits',
    PATIENT_LIST_FOR_ADMISSION_URL='',
    RESTRICT_WARD_ADMINISTRATION_TO_LOGIN_LOCATION=False,
)
class BedManagementAPITests(APITestCase):
    def setUp(self) -> None:
        """Set up users and an upstream with two wards and three waiting patients."""
        cache.clear()
        self.fake = FakeOpenMRS()
        self.fake.add_location(ADMISSION_TAG, 'ward-a', 'Ward A')
        self.fake.add_location(ADMISSION_TAG, 'ward-b', 'Ward B')
        self.fake.add_bed('ward-a', 1, 'A-0001')
        self.fake.add_bed('ward-a', 2, 'A-0002', status='OCCUPIED')
        self.fake.add_bed('ward-b', 3, 'B-0001')
        self.fake.visit_pages = paged([
            visit('p1', 'Jane Doe'),
            visit('p2', 'John Roe'),
            visit('p3', 'No Encounter', encounter=False),
        ])
        patcher = mock.patch('beds.services.openmrs.get_client', return_value=self.fake)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.clerk = User.objects.create_user(username='clerk1', password='clerkpass', role='clerk',
                                              session_location='ward-b')
        self.admin_user = User.objects.create_user(username='admin1', password='adminpass', role='admin')

    def authenticate(self, user: User) -> APIClient:
        """Return an authenticated APIClient for the given user."""
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def test_anonymous_requests_are_rejected(self):
        response = APIClient().get('/api/bed-management/overview')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
        self.assertFalse(response.data['ok'])

    def test_overview_combines_queue_inventory_and_counts(self):
        response = self.authenticate(self.clerk).get('/api/bed-management/overview')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual([c['patientUuid'] for c in data['candidates']['candidates']], ['p1', 'p2', 'p3'])
        self.assertEqual([g['location']['uuid'] for g in data['resourcesByLocation']], ['ward-a', 'ward-b'])
        self.assertEqual(data['aggregates'][0]['occupiedBeds'], 1)
        self.assertFalse(data['scope']['restricted'])
        self.assertIsNone(data['error'])

    def test_restricted_scope_follows_session_location(self):
        with self.settings(RESTRICT_WARD_ADMINISTRATION_TO_LOGIN_LOCATION=True):
            response = self.authenticate(self.clerk).get('/api/bed-management/resources')
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            groups = response.data['data']['resourcesByLocation']
            self.assertEqual([g['location']['uuid'] for g in groups], ['ward-b'])

            response = self.authenticate(self.clerk).get(
                '/api/bed-management/resources', HTTP_X_SESSION_LOCATION='ward-a'
            )
            groups = response.data['data']['resourcesByLocation']
            self.assertEqual([g['location']['uuid'] for g in groups], ['ward-a'])

    def test_assign_then_resubmit_conflicts(self):
        client = self.authenticate(self.clerk)
        response = client.post('/api/bed-management/assign', {'patientUuid': 'p1', 'bedId': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['message'], 'Bed A-0001 was assigned to Jane Doe successfully.')
        self.assertEqual(response.data['data']['state']['bedStatus'], 'OCCUPIED')
        allocation = Allocation.objects.get(candidate_uuid='p1', ended_at__isnull=True)
        self.assertEqual(allocation.created_by, self.clerk)

        response = client.post('/api/bed-management/assign', {'patientUuid': 'p1', 'bedId': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'conflict')
        self.assertEqual(self.fake.count('assign_bed'), 1)

        resources = client.get('/api/bed-management/resources').data['data']
        ward_a = resources['resourcesByLocation'][0]['resources']
        self.assertEqual(ward_a[0]['status'], 'OCCUPIED')

    def test_assign_without_encounter(self):
        response = self.authenticate(self.clerk).post(
            '/api/bed-management/assign', {'patientUuid': 'p3', 'bedId': 1}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'missing_encounter')
        self.assertEqual(response.data['error']['message'],
                         'This operation requires an admission encounter filled first')
        self.assertEqual(response.data['error']['state']['blockingReason'], 'missing_encounter')
        self.assertEqual(self.fake.count('assign_bed'), 0)
        self.assertFalse(Allocation.objects.exists())

    def test_assign_without_bed(self):
        response = self.authenticate(self.clerk).post(
            '/api/bed-management/assign', {'patientUuid': 'p1'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'no_resource_selected')

    def test_assign_unknown_patient(self):
        response = self.authenticate(self.clerk).post(
            '/api/bed-management/assign', {'patientUuid': 'nobody', 'bedId': 1}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_transient_upstream_failure(self):
        self.fake.assign_error = TransientError('bed service timed out')
        response = self.authenticate(self.clerk).post(
            '/api/bed-management/assign', {'patientUuid': 'p1', 'bedId': 1}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data['error']['code'], 'transient')
        self.assertEqual(response.data['error']['state']['phase'], 'pending')
        self.assertTrue(AuditEvent.objects.filter(action='bed_assign', status='failed').exists())

    def test_transfer_and_release(self):
        client = self.authenticate(self.clerk)
        client.post('/api/bed-management/assign', {'patientUuid': 'p1', 'bedId': 1}, format='json')

        response = client.post('/api/bed-management/transfer', {'patientUuid': 'p1', 'bedId': 3}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['allocation']['bedId'], 3)
        self.assertEqual(response.data['data']['state']['phase'], 'transferred')

        response = client.post('/api/bed-management/release', {'bedId': 3}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['state']['phase'], 'released')
        self.assertFalse(Allocation.objects.filter(ended_at__isnull=True).exists())

        response = client.post('/api/bed-management/release', {'bedId': 3}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_save_resource_requires_admin_role(self):
        payload = {'bedNumber': 'A-0009', 'row': 1, 'column': 2, 'status': 'available',
                   'bedType': 'Standard', 'locationUuid': 'ward-a'}
        response = self.authenticate(self.clerk).post('/api/bed-management/resources/save', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.authenticate(self.admin_user).post(
            '/api/bed-management/resources/save', payload, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        bed_uuid, sent = self.fake.saved_beds[0]
        self.assertIsNone(bed_uuid)
        self.assertEqual(sent['status'], 'AVAILABLE')
        self.assertIn(f'inventory:{ADMISSION_TAG}:ward-a', response.data['data']['invalidatedKeys'])

    def test_save_resource_validation(self):
        payload = {'bedNumber': 'A1', 'row': 0, 'column': 1, 'status': 'broken',
                   'bedType': '', 'locationUuid': 'ward-a', 'description': 'x' * 256}
        response = self.authenticate(self.admin_user).post(
            '/api/bed-management/resources/save', payload, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'validation')
        for field in ('bedNumber', 'row', 'status', 'bedType', 'description'):
            self.assertIn(field, response.data['error']['message'])
        self.assertEqual(self.fake.saved_beds, [])

    def test_edit_resource_posts_to_bed_uuid(self):
        payload = {'uuid': 'bed-uuid-1', 'bedNumber': 'A-0001', 'row': 1, 'column': 1, 'status': 'OCCUPIED',
                   'bedType': 'ICU', 'locationUuid': 'ward-a'}
        response = self.authenticate(self.admin_user).post(
            '/api/bed-management/resources/save', payload, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.fake.saved_beds[0][0], 'bed-uuid-1')
        self.assertNotIn('uuid', self.fake.saved_beds[0][1])

    def test_save_location_defaults_to_mortuary_tag(self):
        self.fake.tags = [{'uuid': MORTUARY_TAG, 'display': 'Mortuary', 'name': 'Mortuary'}]
        response = self.authenticate(self.admin_user).post(
            '/api/bed-management/locations/save', {'name': 'Cold Room 2'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(self.fake.saved_locations, [{'name': 'Cold Room 2', 'tags': [MORTUARY_TAG]}])

    def test_location_tags_are_annotated_with_role(self):
        self.fake.tags = [
            {'uuid': ADMISSION_TAG, 'display': 'Admission Location'},
            {'uuid': MORTUARY_TAG, 'display': 'Mortuary'},
            {'uuid': 'login', 'display': 'Login Location'},
        ]
        response = self.authenticate(self.clerk).get('/api/bed-management/location-tags')
        self.assertEqual([t['role'] for t in response.data['data']], ['ward', 'mortuary', 'other'])

    def test_summary(self):
        response = self.authenticate(self.clerk).get('/api/bed-management/summary')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        wards = response.data['data']['wards']['aggregates']
        self.assertEqual([(w['locationUuid'], w['totalBeds']) for w in wards], [('ward-a', 2), ('ward-b', 1)])

    def test_summary_refresh_parameter(self):
        client = self.authenticate(self.clerk)
        client.get('/api/bed-management/summary')
        client.get('/api/bed-management/summary?refresh=true')
        self.assertEqual(self.fake.count('locations_by_tag'), 4)

        response = client.get('/api/bed-management/summary?refresh=maybe')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'validation')

    def test_healthz(self):
        response = self.client.get('/healthz')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['db'])
