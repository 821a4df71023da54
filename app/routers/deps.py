from fastapi import Request
from ..storage.store import FileSystemImageStore


def get_store(request: Request) -> FileSystemImageStore:
    """The store built (or injected) when the app was created."""
    return request.app.state.store
