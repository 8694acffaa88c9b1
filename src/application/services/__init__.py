from .bounded_waiter import BoundedWaiter
from .controller_service import ControllerService
from .ec2_instance_reconciler import Ec2InstanceReconciler, ReconcileResult
from .instance_lifecycle_service import InstanceLifecycleService, build_instance_tags
from .reconcile_queue import ReconcileQueue

__all__ = [
    "BoundedWaiter",
    "ControllerService",
    "Ec2InstanceReconciler",
    "ReconcileResult",
    "InstanceLifecycleService",
    "build_instance_tags",
    "ReconcileQueue",
]
