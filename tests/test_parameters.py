"""Tests for runtime parameter resolution."""

import asyncio

import pytest

from runtime_init.cloud import CloudClient, CloudClientRegistry
from runtime_init.config import RuntimeParameter
from runtime_init.errors import ApplicationError, PhaseError, RetryExhausted, UnknownCloudEnvironment
from runtime_init.parameters import query_path, resolve_parameter, resolve_runtime_parameters


class FakeAwsClient(CloudClient):
    """Cloud client serving fixed secrets and metadata."""

    def __init__(self, environment):
        super().__init__(environment)
        self.secret_specs = []

    async def get_secret(self, spec):
        self.secret_specs.append(spec)
        return {"admin-pass": "s3cr3t"}[spec["secretId"]]

    async def get_metadata(self, spec):
        return {"hostname": "ip-10-0-0-5.ec2.internal"}[spec["field"]]


@pytest.fixture
def cloud_clients():
    registry = CloudClientRegistry()
    registry.register("aws", FakeAwsClient)
    return registry


class TestQueryPath:
    """Tests for query_path()."""

    def test_nested_mapping(self):
        assert query_path({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_list_index(self):
        assert query_path({"items": [{"ip": "10.0.0.1"}, {"ip": "10.0.0.2"}]}, "items.1.ip") == "10.0.0.2"

    def test_missing_part(self):
        with pytest.raises(ValueError, match="missing 'x'"):
            query_path({"a": {}}, "a.x")


class TestResolveParameter:
    """Tests for resolve_parameter()."""

    def test_static(self):
        parameter = RuntimeParameter({"name": "PORT", "type": "static", "value": 8443})
        assert asyncio.run(resolve_parameter(parameter)) == 8443

    def test_url_with_query(self, device):
        device.route("GET", "/document", (200, {"region": "us-west-2", "zone": "a"}))
        parameter = RuntimeParameter({
            "name": "REGION",
            "type": "url",
            "value": "http://169.254.169.254/document",
            "query": "region",
        })

        assert asyncio.run(resolve_parameter(parameter, transport=device.transport)) == "us-west-2"

    def test_url_headers_sent(self, device):
        device.route("GET", "/token", (200, "abc"))
        parameter = RuntimeParameter({
            "name": "TOKEN",
            "type": "url",
            "value": "http://169.254.169.254/token",
            "headers": [{"name": "X-aws-ec2-metadata-token-ttl-seconds", "value": "21600"}],
        })

        assert asyncio.run(resolve_parameter(parameter, transport=device.transport)) == "abc"
        assert device.requests[0].headers["X-aws-ec2-metadata-token-ttl-seconds"] == "21600"

    def test_url_file(self, tmp_path):
        path = tmp_path / "value.json"
        path.write_text('{"nested": {"value": 7}}')
        parameter = RuntimeParameter({
            "name": "SEVEN", "type": "url", "value": f"file://{path}", "query": "nested.value",
        })

        assert asyncio.run(resolve_parameter(parameter)) == 7

    def test_url_non_2xx_raises(self, device):
        parameter = RuntimeParameter({"name": "X", "type": "url", "value": "http://example.com/missing"})

        with pytest.raises(ApplicationError) as exc_info:
            asyncio.run(resolve_parameter(parameter, transport=device.transport))

        assert exc_info.value.code == 404

    def test_secret(self, cloud_clients):
        parameter = RuntimeParameter({
            "name": "ADMIN_PASS",
            "type": "secret",
            "secretProvider": {"environment": "aws", "type": "SecretsManager", "secretId": "admin-pass"},
        })

        assert asyncio.run(resolve_parameter(parameter, cloud_clients=cloud_clients)) == "s3cr3t"

    def test_metadata(self, cloud_clients):
        parameter = RuntimeParameter({
            "name": "HOST_NAME",
            "type": "metadata",
            "metadataProvider": {"environment": "aws", "type": "compute", "field": "hostname"},
        })

        result = asyncio.run(resolve_parameter(parameter, cloud_clients=cloud_clients))
        assert result == "ip-10-0-0-5.ec2.internal"

    def test_unregistered_environment(self, cloud_clients):
        parameter = RuntimeParameter({
            "name": "X", "type": "secret", "secretProvider": {"environment": "azure", "secretId": "x"},
        })

        with pytest.raises(UnknownCloudEnvironment):
            asyncio.run(resolve_parameter(parameter, cloud_clients=cloud_clients))


class TestResolveRuntimeParameters:
    """Tests for resolve_runtime_parameters()."""

    def test_declaration_order_and_read_only(self, cloud_clients, fast_policy):
        parameters = [
            RuntimeParameter({"name": "B", "type": "static", "value": "2"}),
            RuntimeParameter({
                "name": "A",
                "type": "secret",
                "secretProvider": {"environment": "aws", "secretId": "admin-pass"},
            }),
        ]

        resolved = asyncio.run(
            resolve_runtime_parameters(parameters, policy=fast_policy, cloud_clients=cloud_clients)
        )

        assert list(resolved) == ["B", "A"]
        assert resolved["A"] == "s3cr3t"
        with pytest.raises(TypeError):
            resolved["A"] = "changed"

    def test_failure_names_parameter(self, device, fast_policy):
        parameters = [
            RuntimeParameter({"name": "OK", "type": "static", "value": 1}),
            RuntimeParameter({"name": "BROKEN", "type": "url", "value": "http://example.com/missing"}),
        ]

        with pytest.raises(PhaseError) as exc_info:
            asyncio.run(resolve_runtime_parameters(parameters, policy=fast_policy, transport=device.transport))

        error = exc_info.value
        assert error.phase == "runtime_parameters"
        assert error.operation == "BROKEN"
        assert isinstance(error.cause, RetryExhausted)
        assert len(device.calls("GET", "/missing")) == 3

    def test_per_parameter_retry_override(self, device, fast_policy):
        parameters = [
            RuntimeParameter({
                "name": "ONCE", "type": "url", "value": "http://example.com/missing", "maxRetries": 1,
            }),
        ]

        with pytest.raises(PhaseError):
            asyncio.run(resolve_runtime_parameters(parameters, policy=fast_policy, transport=device.transport))

        assert len(device.calls("GET", "/missing")) == 1

    def test_secret_values_not_logged(self, cloud_clients, fast_policy, caplog):
        parameters = [
            RuntimeParameter({
                "name": "ADMIN_PASS",
                "type": "secret",
                "secretProvider": {"environment": "aws", "secretId": "admin-pass"},
            }),
        ]

        with caplog.at_level("DEBUG"):
            asyncio.run(resolve_runtime_parameters(parameters, policy=fast_policy, cloud_clients=cloud_clients))

        assert "ADMIN_PASS" in caplog.text
        assert "s3cr3t" not in caplog.text
