"""
Kubernetes repository for Ec2Instance custom resources.

Reads and writes `compute.cloud.com/v1` `Ec2Instance` objects through the
CustomObjectsApi and turns the API server's watch stream into ResourceEvents.
The kubernetes client is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Callable

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from domain.entities.ec2_instance import (
    API_GROUP,
    API_VERSION,
    PLURAL,
    Ec2Instance,
    ReconcileReference,
)
from domain.repositories.ec2_instance_repository import Ec2InstanceRepository, ResourceEvent
from integration.exceptions import ResourceConflictException, ResourceStoreException

log = logging.getLogger(__name__)
logging.getLogger("kubernetes").setLevel(logging.WARNING)

_WATCH_CLOSED = object()


class KubernetesEc2InstanceRepository(Ec2InstanceRepository):
    """
    Ec2InstanceRepository backed by the Kubernetes API server.

    Provides:
    - Reads returning None for resources that no longer exist
    - Replace-based writes guarded by metadata.resourceVersion (HTTP 409 on conflict)
    - Status writes through the status subresource
    - A watch stream restarted transparently when the server closes it
    """

    def __init__(
        self,
        custom_objects_api: client.CustomObjectsApi,
        namespace: str | None = None,
        watch_timeout_seconds: int = 300,
    ):
        self._api = custom_objects_api
        self.namespace = namespace or None
        self.watch_timeout_seconds = watch_timeout_seconds

    @staticmethod
    def create(
        kube_config_path: str | None = None,
        in_cluster: bool | None = None,
        namespace: str | None = None,
        watch_timeout_seconds: int = 300,
    ) -> "KubernetesEc2InstanceRepository":
        """Build a repository from in-cluster or kubeconfig credentials.

        With `in_cluster` unset, the in-cluster service account is tried first
        and the kubeconfig is the fallback.
        """
        try:
            if in_cluster or (in_cluster is None and not kube_config_path):
                try:
                    config.load_incluster_config()
                except ConfigException:
                    if in_cluster:
                        raise
                    config.load_kube_config()
            else:
                config.load_kube_config(config_file=kube_config_path)
        except ConfigException as e:
            raise ResourceStoreException(f"Unable to load Kubernetes configuration: {e}")
        return KubernetesEc2InstanceRepository(
            client.CustomObjectsApi(), namespace=namespace, watch_timeout_seconds=watch_timeout_seconds
        )

    async def get_async(self, reference: ReconcileReference) -> Ec2Instance | None:
        try:
            obj = await asyncio.to_thread(
                self._api.get_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                reference.namespace,
                PLURAL,
                reference.name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._translate(e, f"Get {reference}")
        return Ec2Instance.from_dict(obj)

    async def list_async(self) -> list[Ec2Instance]:
        try:
            if self.namespace:
                result = await asyncio.to_thread(
                    self._api.list_namespaced_custom_object, API_GROUP, API_VERSION, self.namespace, PLURAL
                )
            else:
                result = await asyncio.to_thread(self._api.list_cluster_custom_object, API_GROUP, API_VERSION, PLURAL)
        except ApiException as e:
            raise self._translate(e, "List Ec2Instances")
        return [Ec2Instance.from_dict(item) for item in result.get("items", [])]

    async def update_async(self, entity: Ec2Instance) -> Ec2Instance:
        reference = entity.reference()
        try:
            obj = await asyncio.to_thread(
                self._api.replace_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                reference.namespace,
                PLURAL,
                reference.name,
                entity.to_dict(),
            )
        except ApiException as e:
            raise self._translate(e, f"Update {reference}")
        log.debug(f"Updated {reference} (resourceVersion={obj.get('metadata', {}).get('resourceVersion')})")
        return Ec2Instance.from_dict(obj)

    async def update_status_async(self, entity: Ec2Instance) -> Ec2Instance:
        reference = entity.reference()
        try:
            obj = await asyncio.to_thread(
                self._api.replace_namespaced_custom_object_status,
                API_GROUP,
                API_VERSION,
                reference.namespace,
                PLURAL,
                reference.name,
                entity.to_dict(),
            )
        except ApiException as e:
            raise self._translate(e, f"Update status of {reference}")
        log.debug(f"Updated status of {reference} (resourceVersion={obj.get('metadata', {}).get('resourceVersion')})")
        return Ec2Instance.from_dict(obj)

    async def watch_async(self) -> AsyncIterator[ResourceEvent]:
        """Stream change notifications until the consumer stops iterating.

        Raises:
            ResourceStoreException: If the API server rejects the watch.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stopped = threading.Event()

        def publish(item: Any) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed
                stopped.set()

        pump = loop.run_in_executor(None, self._pump_watch_events, publish, stopped)
        try:
            while True:
                item = await queue.get()
                if item is _WATCH_CLOSED:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            stopped.set()
            pump.cancel()

    def _pump_watch_events(self, publish: Callable[[Any], None], stopped: threading.Event) -> None:
        resource_version = ""
        try:
            while not stopped.is_set():
                stream_watch = watch.Watch()
                list_function, args = self._list_call()
                kwargs: dict[str, Any] = {"timeout_seconds": self.watch_timeout_seconds}
                if resource_version:
                    kwargs["resource_version"] = resource_version
                try:
                    for event in stream_watch.stream(list_function, *args, **kwargs):
                        if stopped.is_set():
                            stream_watch.stop()
                            break
                        obj = event.get("object") or {}
                        if event.get("type") == "ERROR":
                            if obj.get("code") == 410:
                                log.info("Ec2Instance watch expired, restarting from a fresh list")
                                resource_version = ""
                                stream_watch.stop()
                                break
                            log.warning(f"Ec2Instance watch reported an error: {obj.get('message')}")
                            continue
                        metadata = obj.get("metadata", {})
                        resource_version = metadata.get("resourceVersion", resource_version)
                        publish(
                            ResourceEvent(
                                type=event.get("type", ""),
                                reference=ReconcileReference(
                                    namespace=metadata.get("namespace") or "default",
                                    name=metadata.get("name", ""),
                                ),
                            )
                        )
                except ApiException as e:
                    if e.status == 410:
                        log.info("Ec2Instance watch expired, restarting from a fresh list")
                        resource_version = ""
                        continue
                    publish(self._translate(e, "Watch Ec2Instances"))
                    return
        except Exception as e:
            publish(ResourceStoreException(f"Watch Ec2Instances - {e}"))
            return
        publish(_WATCH_CLOSED)

    def _list_call(self) -> tuple[Callable[..., Any], tuple]:
        if self.namespace:
            return self._api.list_namespaced_custom_object, (API_GROUP, API_VERSION, self.namespace, PLURAL)
        return self._api.list_cluster_custom_object, (API_GROUP, API_VERSION, PLURAL)

    def _translate(self, error: ApiException, operation: str) -> ResourceStoreException:
        if error.status == 409:
            return ResourceConflictException(f"{operation} - Conflict: {error.reason}")
        log.error(f"{operation} failed with HTTP {error.status}: {error.reason}")
        return ResourceStoreException(f"{operation} - HTTP {error.status}: {error.reason}")
