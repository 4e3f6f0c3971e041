"""Tests for the EventEmitter."""

from worker.events import EventEmitter, GenerationEvent


def test_listeners_receive_payload():
    emitter = EventEmitter()
    received = []
    emitter.add_listener(GenerationEvent.VIDEO_PROGRESS, received.append)

    emitter.emit(GenerationEvent.VIDEO_PROGRESS, "user-1", "video-1", progress=40)

    assert len(received) == 1
    assert received[0].video_id == "video-1"
    assert received[0].data == {"progress": 40}


def test_listeners_only_get_their_event():
    emitter = EventEmitter()
    received = []
    emitter.add_listener(GenerationEvent.VIDEO_COMPLETED, received.append)

    emitter.emit(GenerationEvent.VIDEO_FAILED, "user-1", "video-1")

    assert received == []


def test_failing_listener_does_not_stop_others():
    emitter = EventEmitter()
    received = []

    def broken(event):
        raise RuntimeError("observer bug")

    emitter.add_listener(GenerationEvent.VIDEO_ADDED, broken)
    emitter.add_listener(GenerationEvent.VIDEO_ADDED, received.append)

    emitter.emit(GenerationEvent.VIDEO_ADDED, "user-1", "video-1")

    assert len(received) == 1


def test_removed_listener_is_not_called():
    emitter = EventEmitter()
    received = []
    emitter.add_listener(GenerationEvent.QUEUE_PAUSED, received.append)
    emitter.remove_listener(GenerationEvent.QUEUE_PAUSED, received.append)

    emitter.emit(GenerationEvent.QUEUE_PAUSED, "user-1")

    assert received == []
