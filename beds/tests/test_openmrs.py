"""Status and error-body translation in the upstream client."""
import pytest
import requests

from beds.exceptions import Conflict, TransientError, UpstreamError, UpstreamValidationError
from beds.services.inventory import load_resources
from beds.services.openmrs import OpenMRSClient, extract_error_message


class StubResponse:
    def __init__(self, status_code, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = b'x' if payload is not None else b''

    def json(self):
        if self._payload is None:
            raise ValueError('no json')
        return self._payload


class StubSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.headers = {}
        self.auth = None
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _client(**kwargs):
    session = StubSession(**kwargs)
    return OpenMRSClient(base_url='http://emr.test/openmrs/', username='admin', password='pw',
                         timeout=5, session=session), session


def test_url_building():
    client, _ = _client()
    assert client.url('/bed') == 'http://emr.test/openmrs/ws/rest/v1/bed'
    assert client.url('location') == 'http://emr.test/openmrs/ws/rest/v1/location'
    assert client.url('/rest/v1/visit') == 'http://emr.test/openmrs/ws/rest/v1/visit'
    assert client.url('https://other.test/list') == 'https://other.test/list'


def test_assign_posts_patient_and_encounter():
    client, session = _client(response=StubResponse(201, {'id': 4}))
    client.assign_bed(4, 'p1', 'enc-1')
    method, url, kwargs = session.requests[0]
    assert (method, url) == ('POST', 'http://emr.test/openmrs/ws/rest/v1/beds/4')
    assert kwargs['json'] == {'patientUuid': 'p1', 'encounterUuid': 'enc-1'}
    assert kwargs['timeout'] == 5
    assert session.auth == ('admin', 'pw')


def test_unassign_sends_patient_as_query_parameter():
    client, session = _client(response=StubResponse(204))
    client.unassign_bed(4, 'p1')
    method, url, kwargs = session.requests[0]
    assert method == 'DELETE'
    assert kwargs['params'] == {'patientUuid': 'p1'}


@pytest.mark.parametrize('status_code,exc', [
    (409, Conflict),
    (400, UpstreamValidationError),
    (422, UpstreamValidationError),
    (503, TransientError),
    (500, UpstreamError),
    (404, UpstreamError),
])
def test_status_mapping(status_code, exc):
    client, _ = _client(response=StubResponse(status_code, {'error': {'message': 'nope'}}))
    with pytest.raises(exc):
        client.get_json('/bed')


def test_network_errors_are_transient():
    client, _ = _client(error=requests.exceptions.ConnectTimeout('slow'))
    with pytest.raises(TransientError):
        client.beds_by_location('ward-a')


def test_validation_error_carries_field_errors():
    body = {'error': {
        'message': 'Invalid Submission',
        'fieldErrors': {'bedNumber': [{'message': 'Bed number already in use'}]},
        'globalErrors': [{'message': 'Check the form'}],
    }}
    client, _ = _client(response=StubResponse(400, body))
    with pytest.raises(UpstreamValidationError) as exc:
        client.save_bed({'bedNumber': 'A-0001'})
    assert exc.value.field_errors == {'bedNumber': ['Bed number already in use']}
    assert 'Bed number already in use' in str(exc.value.detail)
    assert 'Check the form' in str(exc.value.detail)


def test_extract_error_message_handles_plain_text():
    assert extract_error_message('Server exploded') == ('Server exploded', {})
    assert extract_error_message(None) == ('', {})


def test_visit_page_parameters():
    client, session = _client(response=StubResponse(200, {'results': []}))
    client.visits_page('inpatient', start_index=100, limit=50)
    params = session.requests[0][2]['params']
    assert params['startIndex'] == 100
    assert params['limit'] == 50
    assert params['visitType'] == 'inpatient'
    assert params['includeInactive'] == 'false'


def test_other_request_errors_are_transient():
    client, _ = _client(error=requests.exceptions.TooManyRedirects('loop'))
    with pytest.raises(TransientError):
        client.locations_by_tag('tag')


@pytest.mark.parametrize('payload', [[{'uuid': 'b1'}], {'results': 'oops'}])
def test_malformed_bodies_are_upstream_errors(payload):
    client, _ = _client(response=StubResponse(200, payload))
    with pytest.raises(UpstreamError):
        client.beds_by_location('ward-a')


class RoutingSession(StubSession):
    """Answers the location list and fails bed reads for one location."""

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        params = kwargs.get('params') or {}
        if url.endswith('/location'):
            return StubResponse(200, {'results': [{'uuid': 'a', 'display': 'A'}, {'uuid': 'b', 'display': 'B'}]})
        if params.get('locationUuid') == 'b':
            raise requests.exceptions.ChunkedEncodingError('connection broken mid-body')
        return StubResponse(200, {'results': [{'id': 1, 'uuid': 'u1', 'bedNumber': 'A-1', 'status': 'AVAILABLE'}]})


@pytest.mark.django_db
def test_broken_location_read_does_not_abort_the_inventory():
    client = OpenMRSClient(base_url='http://emr.test/openmrs', username='', password='', timeout=5,
                           session=RoutingSession())
    result = load_resources('tag', client=client)
    assert result.error is None
    assert list(result.resources_by_location) == ['a']
    assert [w.location_uuid for w in result.warnings] == ['b']
