class IntegrationException(Exception):
    """Base exception for integration layer errors."""
    pass


# AWS EC2 Specific Exceptions

class EC2Exception(IntegrationException):
    """Base exception for AWS EC2 related errors."""
    pass


class EC2ClientConfigurationException(EC2Exception):
    """Raised when a region-scoped EC2 client cannot be constructed."""
    pass


class EC2InstanceNotFoundException(EC2Exception):
    """Raised when an EC2 instance is not found."""
    pass


class EC2InstanceCreationException(EC2Exception):
    """Raised when EC2 instance creation fails."""
    pass


class EC2InstanceOperationException(EC2Exception):
    """Raised when an EC2 instance operation (terminate) fails."""
    pass


class EC2TransientException(EC2Exception):
    """Raised on throttling, service or network errors worth retrying with backoff."""
    pass


class EC2WaitTimeoutException(EC2Exception):
    """Raised when a bounded wait ends before the instance reached the target state."""
    pass


class EC2AuthenticationException(EC2Exception):
    """Raised when AWS credentials are invalid or insufficient permissions."""
    pass


class EC2QuotaExceededException(EC2Exception):
    """Raised when AWS resource quota/limit is exceeded."""
    pass


class EC2InvalidParameterException(EC2Exception):
    """Raised when invalid parameters are provided to AWS API."""
    pass


# Resource Store Exceptions

class ResourceStoreException(IntegrationException):
    """Raised when the resource store rejects or fails a request."""
    pass


class ResourceConflictException(ResourceStoreException):
    """Raised when a write lost an optimistic concurrency check."""
    pass
