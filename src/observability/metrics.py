"""Business metrics for the EC2 Instance Operator."""
from opentelemetry import metrics

meter = metrics.get_meter(__name__)

# Counters
reconciles_total = meter.create_counter(
    name="ec2_operator.reconciles",
    description="Total reconciliations",
    unit="1"
)

reconcile_errors_total = meter.create_counter(
    name="ec2_operator.reconcile.errors",
    description="Total reconciliations that ended in an error",
    unit="1"
)

instances_created = meter.create_counter(
    name="ec2_operator.instances.created",
    description="Total EC2 instances provisioned",
    unit="1"
)

instances_terminated = meter.create_counter(
    name="ec2_operator.instances.terminated",
    description="Total EC2 instances confirmed terminated",
    unit="1"
)

store_conflicts = meter.create_counter(
    name="ec2_operator.store.conflicts",
    description="Resource store writes rejected for a stale resourceVersion",
    unit="1"
)

# Histograms
reconcile_duration = meter.create_histogram(
    name="ec2_operator.reconcile.duration",
    description="Time to reconcile one resource",
    unit="ms"
)
