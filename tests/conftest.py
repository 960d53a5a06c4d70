import sys

import pytest
from PyQt5.QtCore import QCoreApplication

from artnet_fixture.artnet_fixture_interface import ArtnetFixtureController
from artnet_fixture.artnet_fixture_store import FixtureStateStore


@pytest.fixture(scope="session")
def qapp():
    """One QCoreApplication per test session, needed for QTimer events."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication(sys.argv[:1])
    return app


@pytest.fixture
def store(tmp_path):
    return FixtureStateStore(tmp_path / "store")


class FixtureRecorder:
    """A controller plus everything it sent to its outputs."""
    def __init__(self, controller: ArtnetFixtureController):
        self.controller = controller
        self.bus: list = []
        self.status: list = []
        self.errors: list = []
        controller.add_output_callback(self.bus.append)
        controller.add_status_callback(self.status.append)
        controller.add_error_callback(self.errors.append)

    def send(self, payload, **fields):
        msg = {"payload": payload, **fields}
        return self.controller.handle_message(msg)


@pytest.fixture
def make_fixture(qapp, store):
    created = []

    def _make(**kwargs):
        kwargs.setdefault("name", "test")
        kwargs.setdefault("node_id", "n1")
        kwargs.setdefault("store", store)
        recorder = FixtureRecorder(ArtnetFixtureController(**kwargs))
        created.append(recorder.controller)
        return recorder

    yield _make

    for controller in created:
        controller.close()
