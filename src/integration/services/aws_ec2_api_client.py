import logging
import threading
from dataclasses import dataclass
from typing import Any

import boto3  # type: ignore
from botocore.exceptions import (  # type: ignore
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    NoRegionError,
    ParamValidationError,
)

from domain.entities.ec2_instance import Ec2InstanceSpec
from domain.enums import EbsVolumeType
from integration.exceptions import (
    EC2AuthenticationException,
    EC2ClientConfigurationException,
    EC2Exception,
    EC2InstanceCreationException,
    EC2InstanceNotFoundException,
    EC2InstanceOperationException,
    EC2InvalidParameterException,
    EC2QuotaExceededException,
    EC2TransientException,
)
from integration.models import Ec2InstanceSnapshotDto

log = logging.getLogger(__name__)
logging.getLogger("botocore").setLevel(logging.INFO)
logging.getLogger("urllib3").setLevel(logging.INFO)

DEFAULT_ROOT_DEVICE_NAME = "/dev/xvda"


@dataclass
class AwsAccountCredentials:
    aws_access_key_id: str

    aws_secret_access_key: str


class AwsEc2Client:
    """Region-scoped access to the AWS EC2 API.

    One boto3 `ec2` client is built lazily per region and reused; boto3 clients
    are safe to share across threads, so concurrent reconciliations of
    different resources may call into the same instance freely. When no static
    credentials are given, the ambient boto3 credential chain is used.

    Every botocore failure leaves this class as one of the `EC2Exception`
    subclasses from `integration.exceptions`.
    """

    aws_account_credentials: AwsAccountCredentials | None

    def __init__(self, aws_account_credentials: AwsAccountCredentials | None = None):
        self.aws_account_credentials = aws_account_credentials
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def client_for(self, region: str) -> Any:
        """Return the boto3 EC2 client for a region, building it on first use.

        Raises:
            EC2ClientConfigurationException: If the client cannot be constructed.
        """
        with self._lock:
            client = self._clients.get(region)
            if client is not None:
                return client

            session_kwargs: dict[str, Any] = {"region_name": region or None}
            if self.aws_account_credentials:
                session_kwargs["aws_access_key_id"] = self.aws_account_credentials.aws_access_key_id
                session_kwargs["aws_secret_access_key"] = self.aws_account_credentials.aws_secret_access_key

            try:
                # boto3 Sessions are not thread-safe, so each client gets its own
                client = boto3.session.Session(**session_kwargs).client("ec2")
            except (NoRegionError, NoCredentialsError, BotoCoreError, ValueError) as e:
                log.error(f"Unable to build EC2 client for region '{region}': {e}")
                raise EC2ClientConfigurationException(f"Unable to build EC2 client for region '{region}': {e}")

            self._clients[region] = client
            log.debug(f"Built EC2 client for region {region}")
            return client

    def _parse_aws_error(self, error: ClientError, operation: str) -> EC2Exception:
        """Parse AWS ClientError and return appropriate specific exception.

        Args:
            error: The boto3 ClientError
            operation: Description of the operation that failed

        Returns:
            Specific exception type based on error code
        """
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))
        http_status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

        # Authentication/Authorization errors
        if error_code in (
            "UnauthorizedOperation",
            "AuthFailure",
            "InvalidClientTokenId",
            "SignatureDoesNotMatch",
            "AccessDenied",
        ):
            return EC2AuthenticationException(f"{operation} - Authentication failed: {error_message}")

        # Instance not found
        if error_code in ("InvalidInstanceID.NotFound", "InvalidInstanceId.NotFound"):
            return EC2InstanceNotFoundException(f"{operation} - Instance not found: {error_message}")

        # Throttling and service-side errors
        if error_code in (
            "RequestLimitExceeded",
            "Throttling",
            "ThrottlingException",
            "ServiceUnavailable",
            "Unavailable",
            "InternalError",
            "InternalFailure",
            "RequestTimeout",
        ) or http_status >= 500:
            return EC2TransientException(f"{operation} - AWS temporarily unavailable [{error_code}]: {error_message}")

        # Quota/Limit errors
        if error_code in (
            "InstanceLimitExceeded",
            "InsufficientInstanceCapacity",
            "VcpuLimitExceeded",
        ):
            return EC2QuotaExceededException(f"{operation} - AWS quota exceeded: {error_message}")

        # Invalid parameters
        if error_code.startswith(("InvalidParameter", "InvalidAMIID.", "InvalidGroup", "InvalidSubnetID.")) or error_code in (
            "InvalidKeyPair.NotFound",
            "InvalidInstanceID.Malformed",
            "InvalidBlockDeviceMapping",
            "InvalidUserData.Malformed",
            "IdempotentParameterMismatch",
            "Unsupported",
        ):
            return EC2InvalidParameterException(f"{operation} - Invalid parameter: {error_message}")

        # Generic AWS error
        return EC2Exception(f"{operation} - AWS error [{error_code}]: {error_message}")

    def _parse_botocore_error(self, error: BotoCoreError, operation: str) -> EC2Exception:
        if isinstance(error, BotoConnectionError):
            return EC2TransientException(f"{operation} - Unable to reach AWS: {error}")
        if isinstance(error, (NoCredentialsError, NoRegionError)):
            return EC2ClientConfigurationException(f"{operation} - {error}")
        return EC2Exception(f"{operation} - {error}")

    def describe_instances(
        self,
        region: str,
        instance_ids: list[str],
        states: list[str] | None = None,
    ) -> list[Ec2InstanceSnapshotDto]:
        """Describe EC2 instances by ID, optionally filtered by lifecycle state.

        Args:
            region: The AWS region where the instances are located.
            instance_ids: The AWS identifiers of the EC2 instances.
            states: Optional lifecycle states to filter on.

        Returns:
            Snapshots of every instance AWS returned, across all reservations.

        Raises:
            EC2InstanceNotFoundException: If AWS does not know an identifier.
            EC2Exception: For any other failure.
        """
        ec2_client = self.client_for(region)
        operation = f"Describe instances {instance_ids}"
        kwargs: dict[str, Any] = {"InstanceIds": instance_ids}
        if states:
            kwargs["Filters"] = [{"Name": "instance-state-name", "Values": states}]
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/describe_instances.html
            response = ec2_client.describe_instances(**kwargs)
        except ParamValidationError as e:
            log.error(f"Error describing instances - invalid parameters: {e}")
            raise EC2InvalidParameterException(f"Invalid instance ID provided: {e}")
        except ClientError as e:
            error = self._parse_aws_error(e, operation)
            if isinstance(error, EC2InstanceNotFoundException):
                log.debug(f"{error}")
            else:
                log.error(f"Error describing instances {instance_ids} in region {region}: {e}")
            raise error
        except BotoCoreError as e:
            raise self._parse_botocore_error(e, operation)

        return [
            Ec2InstanceSnapshotDto.from_describe(instance)
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]

    def find_instances_by_tags(
        self,
        region: str,
        tags: dict[str, str],
        states: list[str] | None = None,
    ) -> list[Ec2InstanceSnapshotDto]:
        """List EC2 instances carrying all the given tags.

        Args:
            region: The AWS region to search in.
            tags: Tag key/value pairs every returned instance must carry.
            states: Optional lifecycle states to filter on.

        Returns:
            Snapshots of the matching instances.
        """
        ec2_client = self.client_for(region)
        operation = f"Find instances by tags {tags}"
        filters = [{"Name": f"tag:{key}", "Values": [value]} for key, value in tags.items()]
        if states:
            filters.append({"Name": "instance-state-name", "Values": states})
        try:
            paginator = ec2_client.get_paginator("describe_instances")
            snapshots = []
            for page in paginator.paginate(Filters=filters):
                for reservation in page.get("Reservations", []):
                    for instance in reservation.get("Instances", []):
                        snapshots.append(Ec2InstanceSnapshotDto.from_describe(instance))
            return snapshots
        except ParamValidationError as e:
            log.error(f"Error finding instances - invalid parameters: {e}")
            raise EC2InvalidParameterException(f"Invalid tag filter provided: {e}")
        except ClientError as e:
            log.error(f"Error finding instances by tags {tags} in region {region}: {e}")
            raise self._parse_aws_error(e, operation)
        except BotoCoreError as e:
            raise self._parse_botocore_error(e, operation)

    def run_instance(
        self,
        spec: Ec2InstanceSpec,
        tags: dict[str, str],
        client_token: str | None = None,
    ) -> Ec2InstanceSnapshotDto | None:
        """Launch exactly one EC2 instance from a declared spec.

        Args:
            spec: The declared instance spec (region, image, type, network, storage).
            tags: Tags applied to the instance and its volumes.
            client_token: Idempotency token; a repeated call with the same token
                returns the originally launched instance instead of a new one.

        Returns:
            Snapshot of the accepted instance, or None when AWS accepted the
            request but returned no instance.

        Raises:
            EC2InvalidParameterException: If AWS rejects the parameters.
            EC2Exception: For any other failure.
        """
        ec2_client = self.client_for(spec.region)
        params = build_run_instances_params(spec, tags, client_token)
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/run_instances.html
            response = ec2_client.run_instances(**params)
        except ParamValidationError as e:
            log.error(f"Error creating EC2 instance - invalid parameters: {e}")
            raise EC2InvalidParameterException(f"Invalid parameters for instance creation: {e}")
        except ClientError as e:
            log.error(f"Error creating EC2 instance in region {spec.region}: {e}")
            raise self._parse_aws_error(e, "Create EC2 instance")
        except BotoCoreError as e:
            raise self._parse_botocore_error(e, "Create EC2 instance")
        except ValueError as e:
            log.error(f"Error creating EC2 instance - invalid value: {e}")
            raise EC2InstanceCreationException(f"Invalid value provided: {e}")

        instances = response.get("Instances", [])
        if not instances:
            log.warning(f"RunInstances in region {spec.region} returned no instances")
            return None

        snapshot = Ec2InstanceSnapshotDto.from_describe(instances[0])
        log.info(
            f"New EC2 instance created in region {spec.region}: id={snapshot.instance_id}, instance_type={spec.instance_type}"
        )
        return snapshot

    def terminate_instances(self, region: str, instance_ids: list[str]) -> dict[str, str]:
        """Request termination of EC2 instances.

        Args:
            region: The AWS region where the instances are located.
            instance_ids: The AWS identifiers of the EC2 instances to terminate.

        Returns:
            Mapping of instance ID to the state AWS reported after the request.

        Raises:
            EC2InstanceNotFoundException: If an instance is unknown to AWS.
            EC2Exception: For any other failure.
        """
        ec2_client = self.client_for(region)
        operation = f"Terminate instances {instance_ids}"
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/terminate_instances.html
            response = ec2_client.terminate_instances(InstanceIds=instance_ids)
        except ParamValidationError as e:
            log.error(f"Error terminating EC2 instances - invalid parameters: {e}")
            raise EC2InvalidParameterException(f"Invalid instance ID provided: {e}")
        except ClientError as e:
            log.error(f"Error terminating EC2 instances {instance_ids} in region {region}: {e}")
            raise self._parse_aws_error(e, operation)
        except BotoCoreError as e:
            raise self._parse_botocore_error(e, operation)
        except ValueError as e:
            log.error(f"Error terminating EC2 instances - invalid value: {e}")
            raise EC2InstanceOperationException(f"Failed to terminate instances: {e}")

        states = {
            item["InstanceId"]: item.get("CurrentState", {}).get("Name", "")
            for item in response.get("TerminatingInstances", [])
        }
        log.info(f"EC2 instance termination requested in region {region}: {states}")
        return states


def build_run_instances_params(
    spec: Ec2InstanceSpec,
    tags: dict[str, str],
    client_token: str | None = None,
) -> dict[str, Any]:
    """Translate a declared spec into RunInstances keyword arguments.

    Empty optional fields are left out rather than sent empty, which AWS rejects.
    """
    params: dict[str, Any] = {
        "ImageId": spec.ami_id,
        "InstanceType": spec.instance_type,
        "MinCount": 1,
        "MaxCount": 1,
    }
    if client_token:
        params["ClientToken"] = client_token
    if spec.key_pair:
        params["KeyName"] = spec.key_pair
    if spec.user_data:
        # boto3 base64-encodes UserData for run_instances
        params["UserData"] = spec.user_data
    if spec.availability_zone:
        params["Placement"] = {"AvailabilityZone": spec.availability_zone}

    if spec.associate_public_ip:
        # Public IP association is only expressible on a network interface,
        # which then has to carry the subnet and groups itself
        interface: dict[str, Any] = {
            "DeviceIndex": 0,
            "AssociatePublicIpAddress": True,
            "DeleteOnTermination": True,
        }
        if spec.subnet:
            interface["SubnetId"] = spec.subnet
        if spec.security_groups:
            interface["Groups"] = list(spec.security_groups)
        params["NetworkInterfaces"] = [interface]
    else:
        if spec.subnet:
            params["SubnetId"] = spec.subnet
        if spec.security_groups:
            params["SecurityGroupIds"] = list(spec.security_groups)

    block_devices = []
    root = spec.storage.root_volume
    if root.size > 0:
        block_devices.append(_block_device(root.device_name or DEFAULT_ROOT_DEVICE_NAME, root.size, root.type, root.encrypted))
    for volume in spec.storage.additional_volumes:
        block_devices.append(_block_device(volume.device_name, volume.size, volume.type, volume.encrypted))
    if block_devices:
        params["BlockDeviceMappings"] = block_devices

    if tags:
        tag_list = [{"Key": k, "Value": v} for k, v in tags.items()]
        params["TagSpecifications"] = [
            {"ResourceType": "instance", "Tags": tag_list},
            {"ResourceType": "volume", "Tags": tag_list},
        ]
    return params


def _block_device(device_name: str, size: int, volume_type: str, encrypted: bool) -> dict[str, Any]:
    return {
        "DeviceName": device_name,
        "Ebs": {
            "VolumeSize": size,
            "VolumeType": volume_type or EbsVolumeType.GP3.value,
            "Encrypted": encrypted,
            "DeleteOnTermination": True,
        },
    }
