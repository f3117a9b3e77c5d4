"""
Document store façon Firestore, posé sur SQLAlchemy.

Chaque document est une ligne (collection, id, data JSON) de la table `documents`.
Pas de jointure: les relations sont des tableaux de références stockés dans les
documents eux-mêmes, maintenus par app.services.relationship_service.

Opérations (toutes async, le travail SQL part dans le threadpool Starlette):
- get / set / update / update_from / delete
- append_unique / array_remove (union / retrait idempotents)
- add (id généré)
- query (== et array-contains)
- subscribe (notifications après chaque écriture commitée)
"""

import logging
import secrets
import string
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from dateutil.parser import isoparse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from app.core.errors import DocumentNotFound, TransportFailure
from app.models.document import StoredDocument

logger = logging.getLogger(__name__)

USERS = "users"
GROUPS = "groups"
TASKS = "tasks"

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 20


# ============ RÉFÉRENCES ============

@dataclass(frozen=True)
class Ref:
    """Référence faible vers un document: (collection, id)."""

    collection: str
    id: str

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.id}"

    @classmethod
    def of(cls, value: Any, collection: str) -> "Ref":
        # seul endroit qui accepte "id nu" OU "collection/id" OU Ref
        # (la collection attendue n'est jamais remplacée par celle de l'entrée)
        if isinstance(value, Ref):
            ref = value
        elif isinstance(value, str) and value:
            if "/" in value:
                coll, _, doc_id = value.partition("/")
                ref = cls(coll, doc_id)
            else:
                ref = cls(collection, value)
        else:
            raise ValueError(f"Cannot build a {collection} reference from {value!r}")
        if ref.collection != collection or not ref.id or "/" in ref.id:
            raise ValueError(f"Expected a {collection} reference, got {value!r}")
        return ref

    def __str__(self) -> str:
        return self.path


def same_reference(a: Any, b: Any) -> bool:
    """Égalité de références, en tolérant les anciens ids stockés en string."""
    if isinstance(a, Ref) and isinstance(b, str):
        return a.id == b or a.path == b
    if isinstance(b, Ref) and isinstance(a, str):
        return b.id == a or b.path == a
    return a == b


# ============ SENTINELLES ============

class _ServerTimestamp:
    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class ArrayUnion:
    def __init__(self, *values):
        self.values = values


class ArrayRemove:
    def __init__(self, *values):
        self.values = values


# ============ TIMESTAMPS ============

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Convertit une date ISO-8601 en timestamp UTC.

    "2025-03-14" -> 2025-03-14T00:00:00+00:00 (minuit UTC, la date ne bouge pas)
    Un datetime naïf est considéré comme UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = isoparse(value.strip())
    else:
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


# ============ CODEC JSON ============

def encode_value(value: Any) -> Any:
    if isinstance(value, Ref):
        return {"__ref__": value.path}
    if isinstance(value, datetime):
        return {"__timestamp__": to_iso(value)}
    if isinstance(value, dict):
        return {key: encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {"__ref__"}:
            collection, _, doc_id = value["__ref__"].partition("/")
            return Ref(collection, doc_id)
        if set(value) == {"__timestamp__"}:
            return datetime.fromisoformat(value["__timestamp__"])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def _apply_fields(base: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    data = dict(base)
    for key, value in fields.items():
        if value is SERVER_TIMESTAMP:
            data[key] = now
        elif isinstance(value, ArrayUnion):
            current = _as_list(data.get(key))
            for item in value.values:
                if not any(same_reference(item, existing) for existing in current):
                    current.append(item)
            data[key] = current
        elif isinstance(value, ArrayRemove):
            current = _as_list(data.get(key))
            data[key] = [
                existing for existing in current
                if not any(same_reference(existing, item) for item in value.values)
            ]
        else:
            data[key] = value
    return data


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    # ancien schéma: une seule référence au lieu d'un tableau
    return [value]


# ============ SNAPSHOTS / REQUÊTES ============

@dataclass
class DocumentSnapshot:
    ref: Ref
    data: Optional[Dict[str, Any]]

    @property
    def id(self) -> str:
        return self.ref.id

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, field: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(field, default)


QUERY_OPERATORS = ("==", "array-contains")


@dataclass(frozen=True)
class Query:
    collection: str
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in QUERY_OPERATORS:
            raise ValueError(f"Unsupported query operator: {self.op}")

    def matches(self, data: Optional[Dict[str, Any]]) -> bool:
        if data is None:
            return False
        stored = data.get(self.field)
        if self.op == "==":
            return same_reference(stored, self.value)
        return any(same_reference(item, self.value) for item in _as_list(stored))


Target = Union[Ref, Query]
OnChange = Callable[[DocumentSnapshot], None]
OnError = Callable[[BaseException], None]
Unsubscribe = Callable[[], None]


class _Listener:
    def __init__(self, target: Target, on_change: OnChange, on_error: Optional[OnError]):
        self.target = target
        self.on_change = on_change
        self.on_error = on_error
        self.active = True

    def wants(self, ref: Ref, before, after) -> bool:
        if isinstance(self.target, Ref):
            return self.target == ref
        if self.target.collection != ref.collection:
            return False
        # le document entre OU sort du résultat de la requête
        return self.target.matches(before) or self.target.matches(after)


def new_document_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


# ============ STORE ============

class DocumentStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._write_lock = threading.Lock()
        self._listeners: List[_Listener] = []
        self._listeners_lock = threading.Lock()

    # ---- lecture ----

    async def get(self, ref: Ref) -> DocumentSnapshot:
        return await self._call(self._get_sync, ref)

    async def query(self, collection: str, field: str, op: str, value: Any) -> List[DocumentSnapshot]:
        return await self._call(self._query_sync, Query(collection, field, op, value))

    async def all(self, collection: str) -> List[DocumentSnapshot]:
        return await self._call(self._all_sync, collection)

    # ---- écriture ----

    async def set(self, ref: Ref, fields: Dict[str, Any]) -> None:
        await self._write(ref, lambda before: _apply_fields({}, fields))

    async def update(self, ref: Ref, fields: Dict[str, Any]) -> None:
        def mutate(before):
            if before is None:
                raise DocumentNotFound(ref.path)
            return _apply_fields(before, fields)

        await self._write(ref, mutate)

    async def update_from(self, ref: Ref, compute: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        """
        Mise à jour calculée à partir de l'état courant, dans la même écriture
        verrouillée (pas de lecture séparée). Retourne le document écrit.
        """
        def mutate(before):
            if before is None:
                raise DocumentNotFound(ref.path)
            return _apply_fields(before, compute(before))

        _, after = await self._write(ref, mutate)
        return after

    async def append_unique(self, ref: Ref, field: str, value: Any) -> None:
        await self.update(ref, {field: ArrayUnion(value)})

    async def array_remove(self, ref: Ref, field: str, value: Any) -> None:
        await self.update(ref, {field: ArrayRemove(value)})

    async def add(self, collection: str, fields: Dict[str, Any]) -> str:
        ref = Ref(collection, new_document_id())

        def mutate(before):
            if before is not None:
                raise TransportFailure(f"Document id collision on {ref.path}")
            return _apply_fields({}, fields)

        await self._write(ref, mutate)
        return ref.id

    async def delete(self, ref: Ref) -> None:
        await self._write(ref, lambda before: None)

    # ---- abonnements ----

    def subscribe(self, target: Target, on_change: OnChange, on_error: Optional[OnError] = None) -> Unsubscribe:
        """
        S'abonne aux changements d'un document (Ref) ou d'une requête (Query).

        on_change reçoit le snapshot du document modifié. Pas de snapshot initial.
        Le handle retourné peut être appelé plusieurs fois sans effet.
        """
        listener = _Listener(target, on_change, on_error)
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._listeners_lock:
                if listener.active:
                    listener.active = False
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def close(self):
        with self._listeners_lock:
            for listener in self._listeners:
                listener.active = False
            self._listeners = []

    # ---- interne ----

    async def _call(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as e:
            logger.error(f"Store unavailable: {e}")
            raise TransportFailure(str(e)) from e

    async def _write(self, ref: Ref, mutate) -> Tuple[Optional[dict], Optional[dict]]:
        before, after = await self._call(self._write_sync, ref, mutate)
        self._notify(ref, before, after)
        return before, after

    def _load(self, session, ref: Ref, for_update: bool = False) -> Optional[StoredDocument]:
        # SELECT ... FOR UPDATE: verrou de ligne entre processus (ignoré par sqlite)
        return session.get(StoredDocument, (ref.collection, ref.id), with_for_update=True if for_update else None)

    def _get_sync(self, ref: Ref) -> DocumentSnapshot:
        with self._session_factory() as session:
            row = self._load(session, ref)
            return DocumentSnapshot(ref, decode_value(row.data) if row else None)

    def _all_sync(self, collection: str) -> List[DocumentSnapshot]:
        with self._session_factory() as session:
            rows = (
                session.query(StoredDocument)
                .filter(StoredDocument.collection == collection)
                .order_by(StoredDocument.created_at, StoredDocument.id)
                .all()
            )
            return [DocumentSnapshot(Ref(collection, row.id), decode_value(row.data)) for row in rows]

    def _query_sync(self, query: Query) -> List[DocumentSnapshot]:
        return [snap for snap in self._all_sync(query.collection) if query.matches(snap.data)]

    def _write_sync(self, ref: Ref, mutate) -> Tuple[Optional[dict], Optional[dict]]:
        # read-modify-write sérialisé: verrou local (threads) + verrou de ligne (workers)
        with self._write_lock:
            with self._session_factory() as session:
                row = self._load(session, ref, for_update=True)
                before = decode_value(row.data) if row else None
                after = mutate(before)
                if after is None:
                    if row is not None:
                        session.delete(row)
                elif row is None:
                    session.add(StoredDocument(collection=ref.collection, id=ref.id, data=encode_value(after)))
                else:
                    row.data = encode_value(after)
                session.commit()
        return before, after

    def _notify(self, ref: Ref, before, after):
        with self._listeners_lock:
            listeners = [listener for listener in self._listeners if listener.active]

        for listener in listeners:
            if not listener.wants(ref, before, after):
                continue
            try:
                listener.on_change(DocumentSnapshot(ref, after))
            except Exception as e:
                logger.exception(f"Listener on {listener.target} failed")
                if listener.on_error is not None:
                    listener.on_error(e)
