"""
Service wiring.

Builds one PermissionAuthority, rule engine, rule store and the services on
top of them for the process, and registers them in the service registry.

Usage:
    engine = create_sync_engine()
    access = build_services(session_factory=create_session_factory(engine))
    access.workflow.create(user_id, EntityType.INVOICE, data)

Without a session factory the stores are in-memory (development, tests).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from config.settings import Settings, get_settings
from database.connection import SessionFactory
from rbac.authority import PermissionAuthority
from rbac.broadcast import RedisInvalidationBroadcaster, create_redis_client
from rbac.stores import InMemoryRoleAssignmentStore, RoleAssignmentStore, SqlAlchemyRoleAssignmentStore
from workflow.engine import RuleEngine, RuleMetrics
from workflow.management import RuleManagementService
from workflow.state_machine import ApprovalWorkflow, Notifier
from workflow.stores import InMemoryRuleStore, RuleStore, SqlAlchemyRuleStore

from .logging_config import configure_logging
from .service_registry import (
    APPROVAL_WORKFLOW,
    AUTHORITY,
    RULE_ENGINE,
    RULE_MANAGEMENT,
    RULE_STORE,
    ServiceRegistry,
    services,
)

logger = logging.getLogger(__name__)


@dataclass
class AccessServices:
    """Everything built by build_services()."""
    authority: PermissionAuthority
    role_store: RoleAssignmentStore
    engine: RuleEngine
    rule_store: RuleStore
    rule_management: RuleManagementService
    workflow: ApprovalWorkflow
    broadcaster: Optional[RedisInvalidationBroadcaster] = None
    listener: Optional[threading.Thread] = None

    def shutdown(self) -> None:
        """Stop the invalidation listener, if one is running."""
        if self.broadcaster is not None:
            self.broadcaster.stop()
        if self.listener is not None:
            self.listener.join(timeout=5)


def build_services(
    settings: Optional[Settings] = None,
    session_factory: Optional[SessionFactory] = None,
    redis_client: Any = None,
    notifier: Optional[Notifier] = None,
    registry: Optional[ServiceRegistry] = None,
    configure_logs: bool = False,
    start_listener: bool = False,
) -> AccessServices:
    """
    Build and register the access-control and workflow services.

    Args:
        settings: Application settings; loaded from the environment if None
        session_factory: SQLAlchemy session factory; in-memory stores if None
        redis_client: Client for invalidation broadcast; built from settings
            when broadcasting is enabled and none is given
        notifier: Receives workflow status and rule notifications
        registry: Registry to populate (the global one by default)
        configure_logs: Apply settings.logging to the root logger
        start_listener: Run the invalidation subscriber in a daemon thread
    """
    settings = settings or get_settings()
    registry = registry if registry is not None else services

    if configure_logs:
        configure_logging(settings.logging.level, settings.logging.json_output)

    if session_factory is not None:
        role_store: RoleAssignmentStore = SqlAlchemyRoleAssignmentStore(session_factory)
        rule_store: RuleStore = SqlAlchemyRuleStore(session_factory)
    else:
        role_store = InMemoryRoleAssignmentStore()
        rule_store = InMemoryRuleStore()

    broadcaster = None
    if settings.rbac.invalidation_broadcast:
        broadcaster = RedisInvalidationBroadcaster(
            redis_client if redis_client is not None else create_redis_client(settings.redis),
            channel=settings.rbac.invalidation_channel,
        )

    authority = PermissionAuthority(role_store, settings=settings.rbac, broadcaster=broadcaster)

    metrics = RuleMetrics(sink=rule_store.record_execution) if settings.rules.record_metrics else None
    engine = RuleEngine(metrics=metrics)
    rule_management = RuleManagementService(rule_store, authority, engine=engine, settings=settings.rules)
    workflow = ApprovalWorkflow(authority, engine, rule_store, notifier=notifier)

    listener = None
    if broadcaster is not None and start_listener:
        listener = threading.Thread(
            target=broadcaster.listen,
            args=(authority.cache,),
            name="rbac-invalidation-listener",
            daemon=True,
        )
        listener.start()

    registry.register(AUTHORITY, authority)
    registry.register(RULE_ENGINE, engine)
    registry.register(RULE_STORE, rule_store)
    registry.register(RULE_MANAGEMENT, rule_management)
    registry.register(APPROVAL_WORKFLOW, workflow)

    logger.info(
        "Access services built",
        extra={"extra_data": {
            "persistent": session_factory is not None,
            "broadcast": broadcaster is not None,
            "record_metrics": metrics is not None,
        }},
    )

    return AccessServices(
        authority=authority,
        role_store=role_store,
        engine=engine,
        rule_store=rule_store,
        rule_management=rule_management,
        workflow=workflow,
        broadcaster=broadcaster,
        listener=listener,
    )
