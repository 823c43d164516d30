import pytest

from backend.camera import CameraConfig, CameraManager
from backend.errors import CameraError
from fakes import FakeCameraProvider


def _manager(provider, index=0):
    return CameraManager(provider, CameraConfig(index=index, width=640, height=480))


def test_acquire_configures_and_reuses_handle():
    provider = FakeCameraProvider(frames="frame")
    camera = _manager(provider)
    first = camera.acquire()
    assert camera.acquire() is first
    assert provider.opened == [0]
    assert sorted(first.settings.values()) == [480, 640]
    assert camera.read() == "frame"


def test_acquire_wraps_provider_errors():
    camera = _manager(FakeCameraProvider(error=OSError("busy")))
    with pytest.raises(CameraError):
        camera.acquire()
    assert camera.is_active is False


def test_release_is_idempotent_and_read_needs_active_camera():
    provider = FakeCameraProvider()
    camera = _manager(provider)
    camera.acquire()
    camera.release()
    camera.release()
    assert provider.captures[0].released is True
    with pytest.raises(CameraError):
        camera.read()


def test_next_device_wraps_around():
    camera = _manager(FakeCameraProvider(devices=(0, 1, 3)), index=3)
    assert camera.next_device_index() == 0
    camera.select(1)
    assert camera.next_device_index() == 3


def test_held_device_is_listed_even_if_the_scan_misses_it():
    camera = _manager(FakeCameraProvider(devices=(1,)), index=0)
    camera.acquire()
    assert camera.list_devices() == [0, 1]


def test_select_releases_current_handle():
    provider = FakeCameraProvider()
    camera = _manager(provider)
    camera.acquire()
    camera.select(2)
    assert provider.captures[0].released is True
    assert camera.index == 2
    assert camera.is_active is False
