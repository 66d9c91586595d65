"""Importable handlers and loaders referenced by catalog tests."""
from dyntools.core.catalog import CapabilityDefinition


def ping():
    return "pong"


def add(a: int, b: int):
    return a + b


async def load_extra(context):
    return [CapabilityDefinition(name="extra_tool", description="from loader", handler=ping)]


def allow_admins(client_id):
    return ["core", "search"] if client_id.startswith("admin") else ["core"]


NOT_CALLABLE = 42
