"""Tests for InstanceLifecycleService."""

from unittest.mock import MagicMock

import pytest

from application.services.instance_lifecycle_service import (
    LIVE_STATES,
    MANAGED_TAG,
    NAME_TAG,
    NAMESPACE_TAG,
    RESOURCE_UID_TAG,
    InstanceLifecycleService,
    build_instance_tags,
)
from domain.entities.ec2_instance import Ec2Instance, Ec2InstanceSpec, ObjectMeta
from integration.exceptions import (
    EC2AuthenticationException,
    EC2InstanceCreationException,
    EC2InstanceNotFoundException,
    EC2WaitTimeoutException,
)
from integration.models import Ec2InstanceSnapshotDto
from integration.services.aws_ec2_api_client import AwsEc2Client


def snapshot(state: str, instance_id: str = "i-0abc", **kwargs) -> Ec2InstanceSnapshotDto:
    return Ec2InstanceSnapshotDto(instance_id=instance_id, state=state, **kwargs)


@pytest.fixture
def mock_aws_client():
    """Create a mock AWS EC2 client."""
    return MagicMock(spec=AwsEc2Client)


@pytest.fixture
def lifecycle(mock_aws_client):
    return InstanceLifecycleService(
        mock_aws_client,
        create_wait_timeout=0.2,
        create_poll_interval=0.01,
        terminate_wait_timeout=0.2,
        terminate_poll_interval=0.01,
    )


@pytest.fixture
def spec():
    return Ec2InstanceSpec(instance_type="t3.micro", ami_id="ami-0123", region="us-east-1")


class TestCheckExists:
    @pytest.mark.asyncio
    async def test_running_instance_exists(self, lifecycle, mock_aws_client):
        mock_aws_client.describe_instances.return_value = [snapshot("running")]

        exists, found = await lifecycle.check_exists("us-east-1", "i-0abc")

        assert exists is True
        assert found.state == "running"
        mock_aws_client.describe_instances.assert_called_once_with("us-east-1", ["i-0abc"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", ["pending", "stopping", "stopped"])
    async def test_non_terminal_states_exist(self, lifecycle, mock_aws_client, state):
        mock_aws_client.describe_instances.return_value = [snapshot(state)]

        exists, _ = await lifecycle.check_exists("us-east-1", "i-0abc")

        assert exists is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", ["terminated", "shutting-down"])
    async def test_terminal_states_do_not_exist(self, lifecycle, mock_aws_client, state):
        mock_aws_client.describe_instances.return_value = [snapshot(state)]

        assert await lifecycle.check_exists("us-east-1", "i-0abc") == (False, None)

    @pytest.mark.asyncio
    async def test_unknown_instance_is_absent_not_an_error(self, lifecycle, mock_aws_client):
        mock_aws_client.describe_instances.side_effect = EC2InstanceNotFoundException("Instance not found")

        assert await lifecycle.check_exists("us-east-1", "i-0abc") == (False, None)

    @pytest.mark.asyncio
    async def test_empty_response_is_absent(self, lifecycle, mock_aws_client):
        mock_aws_client.describe_instances.return_value = []

        assert await lifecycle.check_exists("us-east-1", "i-0abc") == (False, None)

    @pytest.mark.asyncio
    async def test_empty_id_skips_provider(self, lifecycle, mock_aws_client):
        assert await lifecycle.check_exists("us-east-1", "") == (False, None)
        mock_aws_client.describe_instances.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, lifecycle, mock_aws_client):
        mock_aws_client.describe_instances.side_effect = EC2AuthenticationException("AuthFailure")

        with pytest.raises(EC2AuthenticationException):
            await lifecycle.check_exists("us-east-1", "i-0abc")


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_waits_for_running_and_reads_addresses(self, lifecycle, mock_aws_client, spec):
        mock_aws_client.run_instance.return_value = snapshot("pending")
        mock_aws_client.describe_instances.side_effect = [
            EC2InstanceNotFoundException("not yet visible"),
            [snapshot("pending")],
            [snapshot("running")],
            [snapshot("running", public_ip="203.0.113.5", private_ip="10.0.0.5")],
        ]

        result = await lifecycle.create(spec, {"Name": "web"}, client_token="uid-1")

        assert result.instance_id == "i-0abc"
        assert result.public_ip == "203.0.113.5"
        assert result.private_ip == "10.0.0.5"
        mock_aws_client.run_instance.assert_called_once_with(spec, {"Name": "web"}, "uid-1")
        assert mock_aws_client.describe_instances.call_count == 4

    @pytest.mark.asyncio
    async def test_create_returns_none_without_instance(self, lifecycle, mock_aws_client, spec):
        mock_aws_client.run_instance.return_value = None

        assert await lifecycle.create(spec, {}) is None
        mock_aws_client.describe_instances.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_times_out_when_never_running(self, lifecycle, mock_aws_client, spec):
        mock_aws_client.run_instance.return_value = snapshot("pending")
        mock_aws_client.describe_instances.return_value = [snapshot("pending")]

        with pytest.raises(EC2WaitTimeoutException):
            await lifecycle.create(spec, {})

    @pytest.mark.asyncio
    async def test_create_fails_when_instance_terminates_while_starting(self, lifecycle, mock_aws_client, spec):
        mock_aws_client.run_instance.return_value = snapshot("pending")
        mock_aws_client.describe_instances.return_value = [snapshot("terminated")]

        with pytest.raises(EC2InstanceCreationException):
            await lifecycle.create(spec, {})


class TestTerminate:
    @pytest.mark.asyncio
    async def test_terminate_waits_for_terminated(self, lifecycle, mock_aws_client):
        mock_aws_client.terminate_instances.return_value = {"i-0abc": "shutting-down"}
        mock_aws_client.describe_instances.side_effect = [
            [snapshot("shutting-down")],
            [snapshot("terminated")],
        ]

        assert await lifecycle.terminate("us-east-1", "i-0abc") is True
        mock_aws_client.terminate_instances.assert_called_once_with("us-east-1", ["i-0abc"])

    @pytest.mark.asyncio
    async def test_terminate_unknown_instance_is_success(self, lifecycle, mock_aws_client):
        mock_aws_client.terminate_instances.side_effect = EC2InstanceNotFoundException("Instance not found")

        assert await lifecycle.terminate("us-east-1", "i-0abc") is True
        mock_aws_client.describe_instances.assert_not_called()

    @pytest.mark.asyncio
    async def test_instance_vanishing_during_wait_is_success(self, lifecycle, mock_aws_client):
        mock_aws_client.terminate_instances.return_value = {"i-0abc": "shutting-down"}
        mock_aws_client.describe_instances.side_effect = EC2InstanceNotFoundException("Instance not found")

        assert await lifecycle.terminate("us-east-1", "i-0abc") is True

    @pytest.mark.asyncio
    async def test_terminate_times_out(self, lifecycle, mock_aws_client):
        mock_aws_client.terminate_instances.return_value = {"i-0abc": "shutting-down"}
        mock_aws_client.describe_instances.return_value = [snapshot("shutting-down")]

        with pytest.raises(EC2WaitTimeoutException):
            await lifecycle.terminate("us-east-1", "i-0abc")


@pytest.mark.asyncio
async def test_find_owned_filters_by_resource_uid(lifecycle, mock_aws_client):
    mock_aws_client.find_instances_by_tags.return_value = [snapshot("running", instance_id="i-0owned")]

    found = await lifecycle.find_owned("us-east-1", "uid-1")

    assert found.instance_id == "i-0owned"
    mock_aws_client.find_instances_by_tags.assert_called_once_with(
        "us-east-1", {RESOURCE_UID_TAG: "uid-1"}, LIVE_STATES
    )


@pytest.mark.asyncio
async def test_find_owned_without_uid_skips_provider(lifecycle, mock_aws_client):
    assert await lifecycle.find_owned("us-east-1", "") is None
    mock_aws_client.find_instances_by_tags.assert_not_called()


def test_build_instance_tags_protects_ownership_tags():
    resource = Ec2Instance(
        metadata=ObjectMeta(name="web", namespace="prod", uid="uid-1"),
        spec=Ec2InstanceSpec(tags={"team": "platform", RESOURCE_UID_TAG: "spoofed", "Name": "custom"}),
    )

    tags = build_instance_tags(resource)

    assert tags["team"] == "platform"
    assert tags["Name"] == "custom"
    assert tags[MANAGED_TAG] == "true"
    assert tags[RESOURCE_UID_TAG] == "uid-1"
    assert tags[NAMESPACE_TAG] == "prod"
    assert tags[NAME_TAG] == "web"
