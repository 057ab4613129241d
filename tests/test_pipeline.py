"""End-to-end tests for the onboarding orchestrator."""

import asyncio
import hashlib
import json

import pytest

from runtime_init.bigip.management_client import READY_ENDPOINT
from runtime_init.config import OnboardConfig
from runtime_init.extensions import PACKAGE_MANAGEMENT_ENDPOINT
from runtime_init.pipeline import STAGE_ORDER, Onboarder, PipelineResult, load_status

DO_DECLARE = "/mgmt/shared/declarative-onboarding"


@pytest.fixture
def package(tmp_path):
    path = tmp_path / "f5-declarative-onboarding-1.21.0-3.noarch.rpm"
    path.write_bytes(b"declarative onboarding rpm")
    return path


@pytest.fixture
def document(tmp_path, package):
    log = tmp_path / "order.log"
    return {
        "controls": {
            "retry": {"maxRetries": 2, "retryInterval": 0},
            "readyCheck": {"maxRetries": 3, "retryInterval": 0},
        },
        "runtime_parameters": [{"name": "HOST_NAME", "type": "static", "value": "bigip1.example.com"}],
        "pre_onboard_enabled": [
            {"name": "pre", "type": "inline", "commands": [f"echo pre-{{{{ HOST_NAME }}}} >> {log}"]},
        ],
        "extension_packages": {"install_operations": [{
            "extensionType": "do",
            "extensionUrl": f"file://{package}",
            "extensionHash": hashlib.sha256(b"declarative onboarding rpm").hexdigest(),
        }]},
        "extension_services": {"service_operations": [{
            "extensionType": "do",
            "type": "inline",
            "value": {"schemaVersion": "1.0.0", "class": "Device", "Common": {"hostname": "{{ HOST_NAME }}"}},
        }]},
        "post_onboard_enabled": [
            {"name": "post", "type": "inline", "commands": [f"echo post >> {log}"]},
        ],
    }


@pytest.fixture
def onboard_device(device):
    device.route("POST", PACKAGE_MANAGEMENT_ENDPOINT, (200, {"id": "task-1", "status": "CREATED"}))
    device.route("GET", f"{PACKAGE_MANAGEMENT_ENDPOINT}/task-1", (200, {"id": "task-1", "status": "FINISHED"}))
    device.route("GET", "/mgmt/shared/declarative-onboarding/info", (200, [{"version": "1.21.0"}]))
    device.route("POST", DO_DECLARE, (200, {"result": {"code": 200, "status": "OK"}}))
    return device


def onboard(document, settings, device, dry_run=False):
    onboarder = Onboarder(OnboardConfig(document), settings, transport=device.transport)
    return asyncio.run(onboarder.run(dry_run=dry_run))


class TestOnboarder:
    """Tests for Onboarder.run()."""

    def test_full_run(self, document, settings, onboard_device, tmp_path):
        """Phases run in order; one INSTALL and one declaration reach the device."""
        result = onboard(document, settings, onboard_device)

        assert result.success is True, result.error_message
        assert list(result.stages) == list(STAGE_ORDER)
        assert (tmp_path / "order.log").read_text() == "pre-bigip1.example.com\npost\n"

        assert len(onboard_device.calls("POST", PACKAGE_MANAGEMENT_ENDPOINT)) == 1
        assert len(onboard_device.calls("POST", DO_DECLARE)) == 1
        assert onboard_device.json_body("POST", DO_DECLARE)["Common"] == {"hostname": "bigip1.example.com"}
        assert len(onboard_device.calls("GET", READY_ENDPOINT)) == 2

    def test_device_calls_in_order(self, document, settings, onboard_device):
        onboard(document, settings, onboard_device)

        sequence = [(r.method, r.url.path) for r in onboard_device.requests]
        install = sequence.index(("POST", PACKAGE_MANAGEMENT_ENDPOINT))
        declare = sequence.index(("POST", DO_DECLARE))
        assert sequence[0] == ("GET", READY_ENDPOINT)
        assert install < declare

    def test_failure_stops_run(self, document, settings, onboard_device, tmp_path):
        document["pre_onboard_enabled"][0]["commands"] = ["echo failing >&2; exit 9"]

        result = onboard(document, settings, onboard_device)

        assert result.success is False
        assert result.failed_phase == "pre_onboard_enabled"
        assert result.failed_operation == "pre"
        assert "Phase 'pre_onboard_enabled' operation 'pre' failed" in result.error_message
        assert "failing" in result.error_message
        assert list(result.stages) == ["runtime_parameters", "initial_ready_check", "pre_onboard_enabled"]
        assert onboard_device.calls("POST", PACKAGE_MANAGEMENT_ENDPOINT) == []
        assert not (tmp_path / "order.log").exists()

    def test_device_never_ready(self, document, settings, onboard_device, tmp_path):
        onboard_device.ready = False

        result = onboard(document, settings, onboard_device)

        assert result.success is False
        assert result.failed_phase == "initial_ready_check"
        assert "Ready check failed after 3 attempt(s)" in result.error_message
        assert not (tmp_path / "order.log").exists()

    def test_dry_run_contacts_nothing(self, document, settings, onboard_device):
        result = onboard(document, settings, onboard_device, dry_run=True)

        assert result.success is True
        assert result.dry_run is True
        assert onboard_device.requests == []

    def test_invalid_document(self, settings, onboard_device):
        document = {"runtime_parameters": [{"name": "X", "type": "bogus"}]}

        result = onboard(document, settings, onboard_device)

        assert result.success is False
        assert "type must be one of" in result.error_message
        assert onboard_device.requests == []


class TestRunState:
    """Tests for saved run state."""

    def test_state_saved_and_loaded(self, document, settings, onboard_device):
        onboard(document, settings, onboard_device)

        saved = json.loads(settings.state_file.read_text())
        assert saved["success"] is True
        assert list(saved["stages"]) == list(STAGE_ORDER)

        status = load_status(settings)
        assert isinstance(status, PipelineResult)
        assert status.success is True
        assert status.stages["extension_packages"].operations == ["do"]

    def test_failed_run_state(self, document, settings, onboard_device):
        document["post_onboard_enabled"][0]["commands"] = ["exit 1"]

        onboard(document, settings, onboard_device)
        status = load_status(settings)

        assert status.success is False
        assert status.failed_phase == "post_onboard_enabled"
        assert status.failed_operation == "post"

    def test_no_previous_run(self, settings):
        assert load_status(settings) is None
