"""
Résolution des références (users/<id>, groups/<id>, tasks/<id>).

Une référence absente n'est pas une erreur: c'est une donnée. On renvoie soit
None (fetch_document), soit un placeholder typé (resolve_user / resolve_group).
Une panne du store est absorbée de la même façon, pour qu'une mauvaise
référence ne bloque pas toute une liste.
"""

import logging
from typing import Any, Dict, Optional

from app.core.errors import ChoreError, ReferenceNotFound
from app.core.store import DocumentStore, Ref, GROUPS, USERS

logger = logging.getLogger(__name__)

UNKNOWN_USER = {"id": "unknown", "name": "Unknown", "firstName": "", "lastName": "", "email": "", "username": ""}
UNCATEGORIZED = "Uncategorized"


def user_display_name(data: Dict[str, Any]) -> str:
    """'first last', sinon username, sinon email, sinon 'Unknown User'"""
    full_name = f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip()
    return full_name or data.get("username") or data.get("email") or "Unknown User"


def group_display_name(data: Dict[str, Any]) -> str:
    return data.get("group_name") or UNCATEGORIZED


def group_placeholder(ref: Optional[Ref]) -> Dict[str, Any]:
    return {
        "id": ref.id if ref else "uncategorized",
        "name": UNCATEGORIZED,
        "group_name": UNCATEGORIZED,
        "color": "",
    }


async def load_document(store: DocumentStore, ref: Ref) -> Dict[str, Any]:
    """Charge un document ou lève ReferenceNotFound"""
    snapshot = await store.get(ref)
    if not snapshot.exists:
        raise ReferenceNotFound(ref.path)
    return {**snapshot.data, "id": snapshot.id}


async def fetch_document(store: DocumentStore, reference: Any, collection: str) -> Optional[Dict[str, Any]]:
    """
    Retourne les champs du document + son id, ou None s'il n'existe pas
    (ou si le store n'a pas répondu).
    """
    try:
        ref = Ref.of(reference, collection)
    except ValueError:
        logger.warning(f"Invalid {collection} reference: {reference!r}")
        return None

    try:
        return await load_document(store, ref)
    except ReferenceNotFound:
        logger.info(f"Reference not found: {ref.path}")
        return None
    except ChoreError as e:
        logger.warning(f"Error resolving {ref.path}: {e}")
        return None


def user_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": data["id"],
        "name": user_display_name(data),
        "firstName": data.get("firstName") or "",
        "lastName": data.get("lastName") or "",
        "email": data.get("email") or "",
        "username": data.get("username") or "",
    }


def group_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    name = group_display_name(data)
    return {"id": data["id"], "name": name, "group_name": name, "color": data.get("color") or ""}


async def resolve_user(store: DocumentStore, reference: Any) -> Dict[str, Any]:
    data = await fetch_document(store, reference, USERS) if reference else None
    if data is None:
        return dict(UNKNOWN_USER)
    return user_summary(data)


async def resolve_group(store: DocumentStore, reference: Any) -> Dict[str, Any]:
    if not reference:
        return group_placeholder(None)
    data = await fetch_document(store, reference, GROUPS)
    if data is None:
        try:
            return group_placeholder(Ref.of(reference, GROUPS))
        except ValueError:
            return group_placeholder(None)
    return group_summary(data)


async def resolve(store: DocumentStore, reference: Any, collection: str) -> Dict[str, Any]:
    """Point d'entrée générique: entité résolue ou placeholder de la collection"""
    if collection == USERS:
        return await resolve_user(store, reference)
    if collection == GROUPS:
        return await resolve_group(store, reference)
    data = await fetch_document(store, reference, collection)
    if data is None:
        return {"id": "unknown", "name": "Unknown"}
    return data
