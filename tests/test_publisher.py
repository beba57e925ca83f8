import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from scene_tracking.errors import PublishError
from scene_tracking.services.publisher import (
    NullPublisher,
    ParameterTreePublisher,
    RecordingPublisher,
)
from scene_tracking.st_types import PoseRecord


def _fake_client(rc=mqtt.MQTT_ERR_SUCCESS):
    client = MagicMock()
    client.publish.return_value = SimpleNamespace(rc=rc)
    return client


def _publisher(client, **kw):
    return ParameterTreePublisher(client_factory=lambda: client, **kw)


def _sent(client):
    return [(c.args[0], json.loads(c.args[1]), c.kwargs.get("retain", False))
            for c in client.publish.call_args_list]


def test_first_publish_creates_node_then_updates():
    client = _fake_client()
    pub = _publisher(client)

    pub.publish(PoseRecord(7, 120.5, 80.0, -90.0))

    assert _sent(client) == [
        ("scene/Metabot.7/Position", [0.0, 0.0], True),
        ("scene/Metabot.7/Angle", 0.0, True),
        ("scene/Metabot.7/Position", [120.5, 80.0], True),
        ("scene/Metabot.7/Angle", -90.0, True),
    ]
    assert pub.known_nodes == {7}


def test_known_node_is_not_recreated():
    client = _fake_client()
    pub = _publisher(client)
    pub.publish(PoseRecord(7, 1.0, 2.0, 3.0))
    client.publish.reset_mock()

    pub.publish(PoseRecord(7, 4.0, 5.0, 6.0))

    assert _sent(client) == [
        ("scene/Metabot.7/Position", [4.0, 5.0], True),
        ("scene/Metabot.7/Angle", 6.0, True),
    ]


def test_retained_state_is_latest_pose():
    client = _fake_client()
    pub = _publisher(client)
    pub.publish(PoseRecord(7, 10.0, 20.0, 0.0))
    pub.publish(PoseRecord(7, 110.0, 210.0, 45.0))

    retained = {topic: value for topic, value, retain in _sent(client) if retain}

    assert retained == {
        "scene/Metabot.7/Position": [110.0, 210.0],
        "scene/Metabot.7/Angle": 45.0,
    }


def test_node_path_is_deterministic():
    pub = _publisher(_fake_client(), root="/arena/", prefix="Bot")
    assert pub.node_path(3) == "arena/Bot.3"
    assert pub.node_path("abc") == "arena/Bot.abc"
    assert pub.node_path(3) == pub.node_path(3)


def test_rejected_publish_raises():
    pub = _publisher(_fake_client(rc=mqtt.MQTT_ERR_NO_CONN))
    with pytest.raises(PublishError):
        pub.publish(PoseRecord(1, 0.0, 0.0, 0.0))


def test_start_and_close():
    client = _fake_client()
    pub = _publisher(client, host="broker", port=1884)

    assert pub.start() is pub
    client.connect_async.assert_called_once_with("broker", 1884, 60)
    client.loop_start.assert_called_once()

    pub.close()
    client.disconnect.assert_called_once()
    client.loop_stop.assert_called_once()

    pub.close()
    client.disconnect.assert_called_once()


def test_close_without_start_is_noop():
    client = _fake_client()
    _publisher(client).close()
    client.disconnect.assert_not_called()


def test_recording_and_null_publishers():
    rec = RecordingPublisher()
    r = PoseRecord("a", 1.0, 2.0, 3.0)
    rec.publish(r)
    assert rec.records == [r]
    assert NullPublisher().publish(r) is None
