"""Validation of declared Ec2Instance specs before any provider call."""

import logging
import re

from domain.entities.ec2_instance import Ec2InstanceSpec
from domain.enums import EbsVolumeType

log = logging.getLogger(__name__)

_INSTANCE_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9-]*\.[a-z0-9]+$")
_REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d+$")


class SpecValidationService:
    """Checks an Ec2InstanceSpec for problems the provider would reject anyway.

    Catching them locally lets the reconciler record an `InvalidSpec` condition
    without spending a provisioning request.
    """

    def validate(self, spec: Ec2InstanceSpec) -> list[str]:
        """Return the list of validation errors; empty when the spec is acceptable."""
        errors: list[str] = []

        if not spec.instance_type:
            errors.append("instanceType is required")
        elif not _INSTANCE_TYPE_PATTERN.match(spec.instance_type):
            errors.append(f"instanceType '{spec.instance_type}' is not a valid EC2 instance type")

        if not spec.ami_id:
            errors.append("amiId is required")
        elif not spec.ami_id.startswith("ami-"):
            errors.append(f"amiId '{spec.ami_id}' must start with 'ami-'")

        errors.extend(self.validate_region(spec.region))

        if spec.availability_zone and spec.region and not spec.availability_zone.startswith(spec.region):
            errors.append(f"availabilityZone '{spec.availability_zone}' is not in region '{spec.region}'")

        if spec.subnet and not spec.subnet.startswith("subnet-"):
            errors.append(f"subnet '{spec.subnet}' must start with 'subnet-'")

        # AWS requires security group IDs (sg-xxx) not names when using SubnetId
        if spec.subnet:
            invalid_sgs = [sg for sg in spec.security_groups if not sg.startswith("sg-")]
            if invalid_sgs:
                errors.append(f"securityGroups must be IDs (sg-xxx) when a subnet is set: {invalid_sgs}")

        errors.extend(self._validate_storage(spec))

        if errors:
            log.debug(f"Spec validation failed: {errors}")
        return errors

    def validate_region(self, region: str) -> list[str]:
        """Check only the region, which is all that is needed to reach the provider."""
        if not region:
            return ["region is required"]
        if not _REGION_PATTERN.match(region):
            return [f"region '{region}' is not a valid AWS region name"]
        return []

    def _validate_storage(self, spec: Ec2InstanceSpec) -> list[str]:
        errors: list[str] = []
        known_types = {t.value for t in EbsVolumeType}

        root = spec.storage.root_volume
        if root.size < 0:
            errors.append("storage.rootVolume.size must not be negative")
        if root.type and root.type not in known_types:
            errors.append(f"storage.rootVolume.type '{root.type}' is not a known EBS volume type")

        device_names = set()
        for index, volume in enumerate(spec.storage.additional_volumes):
            prefix = f"storage.additionalVolumes[{index}]"
            if volume.size <= 0:
                errors.append(f"{prefix}.size must be positive")
            if not volume.device_name:
                errors.append(f"{prefix}.deviceName is required")
            elif volume.device_name in device_names:
                errors.append(f"{prefix}.deviceName '{volume.device_name}' is used more than once")
            device_names.add(volume.device_name)
            if volume.type and volume.type not in known_types:
                errors.append(f"{prefix}.type '{volume.type}' is not a known EBS volume type")
        return errors
