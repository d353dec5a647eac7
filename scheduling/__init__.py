"""Facility reservation scheduling and confirmation engine."""
from dataclasses import dataclass

from flask import current_app

from scheduling.backend import HttpPrivilegedBackend, LocalPrivilegedBackend
from scheduling.board import ReservationBoard
from scheduling.filters import FilterQuery, ReservationFilters
from scheduling.notifications import NotificationFanout, NotificationStore, ThreadStore
from scheduling.relay import LineRelay
from scheduling.repository import ReservationRepository
from scheduling.schema import SchemaCapabilities
from scheduling.settings_store import ReservationSettingsStore
from scheduling.workflow import ConfirmationWorkflow
from security.policy import ReservationAccessPolicy


@dataclass
class SchedulingServices:
    capabilities: SchemaCapabilities
    settings: ReservationSettingsStore
    repository: ReservationRepository
    query: FilterQuery
    backend: object
    local_backend: LocalPrivilegedBackend
    fanout: NotificationFanout
    workflow: ConfirmationWorkflow

    def board(self, facility_id, filters=None) -> ReservationBoard:
        return ReservationBoard(self.query, facility_id, filters)


def build_services(config, session, capabilities: SchemaCapabilities, audit=None, relay=None, backend=None):
    """Assemble the engine from a config mapping; ``relay``/``backend`` may be injected."""
    policy = ReservationAccessPolicy(allow_owner_updates=config.get("OWNER_DIRECT_UPDATES", True))
    settings = ReservationSettingsStore(session, capabilities)
    repository = ReservationRepository(session, settings, capabilities, policy)

    relay = relay or LineRelay(
        config.get("LINE_ACCESS_TOKEN"),
        push_url=config.get("LINE_PUSH_URL") or "https://api.line.me/v2/bot/message/push",
        timeout=config.get("RELAY_TIMEOUT_SECONDS", 10),
    )
    local_backend = LocalPrivilegedBackend(session, repository, relay)
    if backend is None:
        if config.get("BACKEND_BASE_URL"):
            backend = HttpPrivilegedBackend(
                config["BACKEND_BASE_URL"],
                config.get("BACKEND_SERVICE_KEY"),
                timeout=config.get("BACKEND_TIMEOUT_SECONDS", 10),
            )
        else:
            backend = local_backend

    store = NotificationStore(
        session, policy, allow_cross_user=config.get("DIRECT_NOTIFICATION_INSERTS", True)
    )
    fanout = NotificationFanout(store, backend)
    workflow = ConfirmationWorkflow(
        repository,
        settings,
        backend,
        fanout,
        ThreadStore(session),
        audit=audit,
        public_base_url=config.get("PUBLIC_BASE_URL", ""),
        cancel_cutoff_minutes=config.get("CANCEL_CUTOFF_MINUTES", 60),
    )
    return SchedulingServices(
        capabilities=capabilities,
        settings=settings,
        repository=repository,
        query=FilterQuery(repository),
        backend=backend,
        local_backend=local_backend,
        fanout=fanout,
        workflow=workflow,
    )


def current_services() -> SchedulingServices:
    return current_app.extensions["scheduling"]
