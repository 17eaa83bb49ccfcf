"""FastAPI dependency injection factories.

The broker is built once in the application lifespan and kept on
``app.state``. Tests replace it through ``app.dependency_overrides``.
"""

from fastapi import Request

from solbroker.broker.errors import BrokerError
from solbroker.broker.service import CompilationBroker


def get_broker(request: Request) -> CompilationBroker:
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        msg = "broker is not running"
        raise BrokerError(msg)
    return broker
