import io
import json
import pytest
import requests
from src.clients.onedrive_client import OneDriveClient


def make_response(status=200, payload=None, body=None, headers=None, stream=None):
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.url = "https://api.onedrive.com/v1.0"
    response.headers.update(headers or {})
    if stream is not None:
        response.raw = stream if hasattr(stream, "read") else io.BytesIO(stream)
    elif payload is not None:
        response._content = json.dumps(payload).encode("utf-8")
    else:
        response._content = body if body is not None else b""
    return response


class FakeSession:
    """Stands in for requests.Session, recording every prepared request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.sent = []

    def prepare_request(self, request):
        return request.prepare()

    def send(self, prepared, **options):
        self.sent.append((prepared, options))
        if not self.responses:
            return make_response(payload={})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self):
        return self.sent[-1][0]

    @property
    def last_options(self):
        return self.sent[-1][1]


@pytest.fixture(name="make_response")
def make_response_fixture():
    return make_response


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return OneDriveClient("test-token", session=session)
