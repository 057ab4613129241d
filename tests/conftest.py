import json
import logging

import httpx
import pytest

from runtime_init.bigip.management_client import READY_ENDPOINT
from runtime_init.config import RuntimeSettings
from runtime_init.utils import RetryPolicy


def ready_document(description="yes", **overrides):
    """Body of GET /mgmt/tm/sys/ready with every entry set to `description`."""
    entries = {
        "configReady": {"description": description},
        "licenseReady": {"description": description},
        "provisionReady": {"description": description},
    }
    for name, value in overrides.items():
        entries[name] = {"description": value}
    return {
        "kind": "tm:sys:ready:readystats",
        "selfLink": "https://localhost/mgmt/tm/sys/ready?ver=15.1.0",
        "entries": {
            "https://localhost/mgmt/tm/sys/ready/0": {
                "nestedStats": {"entries": entries},
            }
        },
    }


class FakeDevice:
    """
    In-memory management API and web server behind an httpx.MockTransport.

    Routes map (method, path) to (status, body). A list of responses is
    served in order, repeating the last one.
    """

    def __init__(self):
        self.requests = []
        self.routes = {}
        self.ready = True

    def route(self, method, path, *responses):
        self.routes[(method, path)] = list(responses)

    def handler(self, request):
        self.requests.append(request)
        key = (request.method, request.url.path)

        if key in self.routes:
            responses = self.routes[key]
            status, body = responses.pop(0) if len(responses) > 1 else responses[0]
            if isinstance(body, (dict, list)):
                return httpx.Response(status, json=body)
            return httpx.Response(status, text=body)

        if key == ("GET", READY_ENDPOINT):
            return httpx.Response(200, json=ready_document("yes" if self.ready else "no"))

        return httpx.Response(404, json={"code": 404, "message": f"{key[1]} not found"})

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_body(self, method, path, index=0):
        return json.loads(self.calls(method, path)[index].content)


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_retries=3, retry_interval=0)


@pytest.fixture
def settings(tmp_path):
    return RuntimeSettings(
        log_file=tmp_path / "log" / "runtime-init.log",
        downloads_dir=tmp_path / "downloads",
        scratch_dir=tmp_path / "scratch",
        state_file=tmp_path / "state" / "last_run.json",
        mgmt_verify_tls=False,
    )


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("runtime_init")
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    logger.setLevel(logging.NOTSET)
