from typing import Optional

from app.clients.gas import GasClient
from app.services.reconcile import StatusReconciler
from app.services.registry import GrantRegistry
from app.services.state_backend import StateBackend
from app.services.state_store import StateStore
from app.settings import Settings


class Portal:
    """Collaborators shared by every request. Built once at startup."""

    def __init__(
        self,
        *,
        settings: Settings,
        grants: GrantRegistry,
        store: StateStore,
        gas: GasClient,
        backend: Optional[StateBackend] = None,
    ):
        self.settings = settings
        self.grants = grants
        self.store = store
        self.gas = gas
        self.backend = backend
        self.reconciler = StatusReconciler(store, gas)
