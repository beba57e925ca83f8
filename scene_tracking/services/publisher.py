from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from ..errors import PublishError
from ..st_types import Identity, PoseRecord


class Publisher(ABC):
    @abstractmethod
    def publish(self, record: PoseRecord) -> None: ...

    def close(self) -> None:
        return None


class NullPublisher(Publisher):
    def publish(self, record: PoseRecord) -> None:
        return None


class RecordingPublisher(Publisher):
    """Keeps every record in memory; used for dry runs and tests."""

    def __init__(self):
        self.records: list[PoseRecord] = []

    def publish(self, record: PoseRecord) -> None:
        self.records.append(record)


class ParameterTreePublisher(Publisher):
    """
    Publishes marker poses into a parameter tree carried over MQTT.

    Each identity owns the node ``<root>/<prefix>.<identity>`` with two leaves,
    ``Position`` ([x, y]) and ``Angle`` (degrees). A node is created on the
    first observation of its identity by publishing retained zero values, so
    a controller that subscribes late still sees every known marker. Updates
    are retained too, so each leaf holds the last value pushed to it.

    Network I/O runs on paho's own thread (``loop_start``); ``publish`` only
    queues the message.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 1883,
        root: str = "scene",
        prefix: str = "Metabot",
        client_id: str = "scene-tracking",
        logger: Optional[logging.Logger] = None,
        client_factory: Optional[Callable[[], mqtt.Client]] = None,
    ):
        self.host = host
        self.port = port
        self.root = root.strip("/")
        self.prefix = prefix
        self.log = logger or logging.getLogger("scene_tracking.publisher")
        if client_factory is None:
            def client_factory():
                return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        self._client = client_factory()
        self._nodes: set[Identity] = set()
        self._started = False

    def start(self) -> "ParameterTreePublisher":
        self._client.connect_async(self.host, self.port, 60)
        self._client.loop_start()
        self._started = True
        self.log.info("parameter tree publisher started (broker=%s:%d, root=%s)",
                      self.host, self.port, self.root)
        return self

    def node_path(self, identity: Identity) -> str:
        return f"{self.root}/{self.prefix}.{identity}"

    @property
    def known_nodes(self) -> set[Identity]:
        return set(self._nodes)

    def _push(self, topic: str, value, retain: bool = False) -> None:
        info = self._client.publish(topic, json.dumps(value), qos=0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")

    def _ensure_node(self, identity: Identity) -> str:
        path = self.node_path(identity)
        if identity not in self._nodes:
            self._push(f"{path}/Position", [0.0, 0.0], retain=True)
            self._push(f"{path}/Angle", 0.0, retain=True)
            self._nodes.add(identity)
            self.log.info("created node %s", path)
        return path

    def publish(self, record: PoseRecord) -> None:
        path = self._ensure_node(record.identity)
        self._push(f"{path}/Position", [float(record.x), float(record.y)], retain=True)
        self._push(f"{path}/Angle", float(record.angle), retain=True)

    def close(self) -> None:
        if not self._started:
            return
        self._client.disconnect()
        self._client.loop_stop()
        self._started = False
