import pytest
import requests

from app_cotizaciones.errors import SyncFailure
from app_cotizaciones.repositories import HttpRemoteQuoteStore


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b'' if payload is None else b'{}'

    def json(self):
        return self._payload


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    responses = []

    def fake_request(method, url, **kwargs):
        recorded.append((method, url, kwargs))
        response = responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(requests, 'request', fake_request)
    return recorded, responses


def test_add_posts_record_with_token_and_timeout(calls):
    recorded, responses = calls
    responses.append(FakeResponse(201, {'id': 'abc123'}))
    store = HttpRemoteQuoteStore('https://api.example.com/v1/', token='t0k', timeout=3)

    assert store.add({'cotizacion_id': 'COT-1'}) == 'abc123'
    method, url, kwargs = recorded[0]
    assert (method, url) == ('POST', 'https://api.example.com/v1/cotizaciones')
    assert kwargs['headers']['Authorization'] == 'Bearer t0k'
    assert kwargs['timeout'] == 3
    assert kwargs['json'] == {'cotizacion_id': 'COT-1'}


def test_list_passes_company_and_owner(calls):
    recorded, responses = calls
    responses.append(FakeResponse(200, {'cotizaciones': [{'cotizacion_id': 'COT-1'}]}))
    store = HttpRemoteQuoteStore('https://api.example.com')

    assert store.list('TECNOPHONE', owner='ana@tecnophone.com') == [{'cotizacion_id': 'COT-1'}]
    assert recorded[0][2]['params'] == {'companyId': 'TECNOPHONE', 'owner': 'ana@tecnophone.com'}


def test_missing_record_is_none(calls):
    _, responses = calls
    responses.append(FakeResponse(404))
    assert HttpRemoteQuoteStore('https://api.example.com').get('nope') is None


@pytest.mark.parametrize('response, retryable', [
    (requests.exceptions.Timeout('lento'), True),
    (requests.exceptions.ConnectionError('sin red'), True),
    (FakeResponse(503), True),
    (FakeResponse(400), False),
])
def test_failures_become_sync_failures(calls, response, retryable):
    _, responses = calls
    responses.append(response)
    store = HttpRemoteQuoteStore('https://api.example.com')
    with pytest.raises(SyncFailure) as excinfo:
        store.update('abc', {'status': 'approved'})
    assert excinfo.value.retryable is retryable


def test_add_without_remote_id_fails(calls):
    _, responses = calls
    responses.append(FakeResponse(200, {}))
    with pytest.raises(SyncFailure):
        HttpRemoteQuoteStore('https://api.example.com').add({})
