import pytest

from dyntools.core.catalog import CapabilityDefinition, ToolsetDefinition
from dyntools.core.sink import RecordingSink


def echo(**kwargs):
    return kwargs


def make_cap(name, handler=echo):
    return CapabilityDefinition(name=name, description=f"{name} tool", handler=handler)


def make_catalog(spec):
    """spec: {key: [capability names]} or {key: {"caps": [...], "modules": [...]}}"""
    catalog = {}
    for key, val in spec.items():
        if isinstance(val, dict):
            caps, modules = val.get("caps", []), val.get("modules", [])
        else:
            caps, modules = val, []
        catalog[key] = ToolsetDefinition(
            key=key,
            name=key.title(),
            description=f"{key} toolset",
            capabilities=[make_cap(c) for c in caps],
            modules=list(modules),
        )
    return catalog


class FailingSink(RecordingSink):
    """Fails when registering one specific name."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on

    def register(self, name, description, schema, handler):
        if name == self.fail_on:
            raise RuntimeError(f"sink rejected {name}")
        super().register(name, description, schema, handler)


class FakeSession:
    def __init__(self, fail=False):
        self.closed = False
        self.fail = fail

    def close(self):
        if self.fail:
            raise RuntimeError("close failed")
        self.closed = True


class FakeAsyncSession:
    def __init__(self):
        self.closed = False

    async def aclose(self):
        self.closed = True


class Counter:
    def __init__(self):
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def catalog():
    return make_catalog({"core": ["ping", "echo"], "search": ["query"], "extra": ["misc"]})


@pytest.fixture
def clock():
    return FakeClock()
