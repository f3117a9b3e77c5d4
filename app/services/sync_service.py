"""
Synchronisation "live" d'un écran.

Machine d'états: idle -> loading -> ready | error (| unauthenticated)
- start()  : focus de l'écran. Récupère l'identité, fait une passe complète
             fetch + hydrate, puis ouvre UN abonnement sur le store.
- notification : on relance la passe complète et on remplace la vue en entier
             (pas de diff incrémental).
- stop()   : perte de focus / démontage. Ferme l'abonnement (idempotent).
- retry()  : depuis error, repasse en loading.

Chaque start() ouvre une nouvelle "génération". Une passe dont la génération
n'est plus la courante (écran quitté, abonnement remplacé) est jetée au lieu
d'écraser la vue. Entre deux passes de la même génération, c'est la dernière
terminée qui gagne.
"""

import asyncio
import functools
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from app.core.errors import ChoreError, Unauthenticated
from app.core.store import DocumentSnapshot, DocumentStore, Query, Ref, Target, GROUPS, TASKS, USERS
from app.schemas.dashboard import DashboardView, ViewMessage
from app.schemas.task import TaskStatusFilter
from app.services.listing_service import list_group_tasks, list_individual_tasks, load_dashboard
from app.services.resolver_service import fetch_document

logger = logging.getLogger(__name__)

LOGIN_REDIRECT = "/auth/login"
DEFAULT_GROUP_NAME = "Group"


class ViewState(str, Enum):
    idle = "idle"
    loading = "loading"
    ready = "ready"
    error = "error"
    unauthenticated = "unauthenticated"


class ViewSynchronizer:
    """Base: les sous-classes donnent la cible d'abonnement et la passe de chargement"""

    def __init__(
        self,
        store: DocumentStore,
        identity_provider,
        on_update: Optional[Callable[[Dict[str, Any]], Any]] = None,
        on_redirect: Optional[Callable[[str], Any]] = None,
    ):
        self.store = store
        self.identity_provider = identity_provider
        self.on_update = on_update
        self.on_redirect = on_redirect

        self.state = ViewState.idle
        self.view: Any = None
        self.error: Optional[str] = None
        self.user_id: Optional[str] = None
        self.passes_committed = 0

        self._generation = 0
        self._unsubscribers: List[Callable[[], None]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[asyncio.Task] = set()

    # ---- à fournir par les sous-classes ----

    def subscription_target(self, user_id: str) -> Target:
        raise NotImplementedError

    def subscription_targets(self, user_id: str) -> List[Target]:
        return [self.subscription_target(user_id)]

    async def fetch(self, user_id: str) -> Any:
        raise NotImplementedError

    # ---- cycle de vie ----

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_subscribed(self) -> bool:
        return bool(self._unsubscribers)

    async def start(self) -> None:
        self._close_subscription()
        self._generation += 1
        generation = self._generation
        self._loop = asyncio.get_running_loop()
        self._set_state(ViewState.loading)

        try:
            user_id = await self.identity_provider.get_current_identity()
        except Unauthenticated as e:
            if self._is_current(generation):
                logger.info(f"No identity for {type(self).__name__}: {e}")
                self.error = str(e)
                self.view = None
                self._set_state(ViewState.unauthenticated)
                if self.on_redirect is not None:
                    self.on_redirect(LOGIN_REDIRECT)
            return

        if not self._is_current(generation):
            return
        self.user_id = user_id

        if not await self._refresh(generation):
            return

        # un seul jeu d'abonnements vivant par instance
        self._unsubscribers = [
            self.store.subscribe(
                target,
                functools.partial(self._on_change, generation),
                functools.partial(self._on_error, generation),
            )
            for target in self.subscription_targets(user_id)
        ]
        logger.debug(f"{type(self).__name__} subscribed to {len(self._unsubscribers)} target(s) (generation {generation})")

    def stop(self) -> None:
        # invalide les passes en vol: leur résultat sera jeté
        self._generation += 1
        self._close_subscription()
        if self.state is not ViewState.idle:
            self.state = ViewState.idle
            logger.debug(f"{type(self).__name__} stopped")

    async def retry(self) -> None:
        await self.start()

    async def settle(self) -> None:
        """Attend la fin des passes déclenchées par les notifications reçues"""
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            await asyncio.sleep(0)

    def message(self) -> Dict[str, Any]:
        view = self.view
        if hasattr(view, "model_dump"):
            view = view.model_dump(mode="json")
        return ViewMessage(
            state=self.state.value,
            generation=self._generation,
            view=view,
            error=self.error,
            redirect=LOGIN_REDIRECT if self.state is ViewState.unauthenticated else None,
        ).model_dump()

    # ---- interne ----

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_state(self, state: ViewState) -> None:
        self.state = state
        if self.on_update is not None:
            self.on_update(self.message())

    def _close_subscription(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()

    async def _refresh(self, generation: int) -> bool:
        try:
            view = await self.fetch(self.user_id)
        except ChoreError as e:
            logger.error(f"{type(self).__name__} load failed: {e}")
            if self._is_current(generation):
                self.error = str(e)
                self.view = None
                self._close_subscription()
                self._set_state(ViewState.error)
            return False

        if not self._is_current(generation):
            logger.debug(f"Discarding stale pass (generation {generation} != {self._generation})")
            return False

        self.view = view
        self.error = None
        self.passes_committed += 1
        self._set_state(ViewState.ready)
        return True

    def _on_change(self, generation: int, snapshot: DocumentSnapshot) -> None:
        # peut être appelé depuis un autre thread/loop que le nôtre
        if not self._is_current(generation) or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_refresh, generation)

    def _schedule_refresh(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        task = self._loop.create_task(self._refresh(generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_error(self, generation: int, error: BaseException) -> None:
        if not self._is_current(generation) or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._fail, generation, error)

    def _fail(self, generation: int, error: BaseException) -> None:
        if not self._is_current(generation):
            return
        logger.error(f"{type(self).__name__} subscription error: {error}")
        self.error = str(error)
        self._close_subscription()
        self._set_state(ViewState.error)


class DashboardSynchronizer(ViewSynchronizer):
    """Dashboard: écoute le document du user (ses tableaux de back-références)"""

    def __init__(self, store, identity_provider, status: TaskStatusFilter = TaskStatusFilter.all, **kwargs):
        super().__init__(store, identity_provider, **kwargs)
        self.status = status

    def subscription_target(self, user_id: str) -> Target:
        return Ref(USERS, user_id)

    async def fetch(self, user_id: str) -> DashboardView:
        return DashboardView(**await load_dashboard(self.store, user_id, self.status))


class GroupTasksSynchronizer(ViewSynchronizer):
    """
    Page d'un groupe: tâches du groupe + tâches individuelles du user + nom du groupe.

    Abonnements: tasks where group == ref, tasks where assignees array-contains
    user, et le document du groupe (renommage).
    """

    def __init__(self, store, identity_provider, group_id: str, status: TaskStatusFilter = TaskStatusFilter.all, **kwargs):
        super().__init__(store, identity_provider, **kwargs)
        self.group_id = group_id
        self.status = status

    def subscription_targets(self, user_id: str) -> List[Target]:
        group_ref = Ref(GROUPS, self.group_id)
        return [
            Query(TASKS, "group", "==", group_ref),
            Query(TASKS, "assignees", "array-contains", Ref(USERS, user_id)),
            group_ref,
        ]

    async def fetch(self, user_id: str) -> Dict[str, Any]:
        group, group_tasks, individual_tasks = await asyncio.gather(
            fetch_document(self.store, Ref(GROUPS, self.group_id), GROUPS),
            list_group_tasks(self.store, self.group_id, self.status),
            list_individual_tasks(self.store, user_id, self.status),
        )
        return {
            "group_id": self.group_id,
            "group_name": (group or {}).get("group_name") or DEFAULT_GROUP_NAME,
            "tasks": [task.model_dump(mode="json") for task in group_tasks],
            "individual_tasks": [task.model_dump(mode="json") for task in individual_tasks],
        }
