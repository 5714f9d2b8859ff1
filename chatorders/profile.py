# chatorders/profile.py
# Client profile capture: the fields needed before an order can be taken.
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .actions import ClientInfo
from .models import Client
from .text import normalize, normalize_dni

MAX_NAME_LEN = 120
MAX_ADDRESS_LEN = 160

_FIELD_FOR_LABEL = {
    "dni": "dni",
    "documento": "dni",
    "direccion": "address",
    "domicilio": "address",
    "nombre": "full_name",
}


def extract_client_info(text: Optional[str]) -> Optional[ClientInfo]:
    """Pick up "DNI: ..." / "Dirección: ..." / "Nombre: ..." lines from a raw message."""
    found: Dict[str, str] = {}
    for line in (text or "").splitlines():
        # label is matched on the accent-free form, value kept as typed
        head, sep, value = line.partition(":")
        if not sep:
            head, sep, value = line.partition("=")
        label = normalize(head)
        field = _FIELD_FOR_LABEL.get(label)
        if field and value.strip():
            found[field] = value.strip()
    if not found:
        return None
    return ClientInfo(**found)


def profile_patch(client: Client, info: Optional[ClientInfo]) -> Dict[str, str]:
    if info is None:
        return {}
    patch: Dict[str, str] = {}

    name = (info.full_name or "").strip()
    if len(name) > 2:
        patch["full_name"] = name[:MAX_NAME_LEN]

    dni = normalize_dni(info.dni)
    if dni:
        patch["dni"] = dni

    address = (info.address or "").strip()
    if len(address) >= 5:
        patch["address"] = address[:MAX_ADDRESS_LEN]

    # only what actually changes
    return {k: v for k, v in patch.items() if getattr(client, k) != v}


async def apply_client_info(db: AsyncSession, client: Client, info: Optional[ClientInfo]) -> Client:
    patch = profile_patch(client, info)
    if not patch:
        return client
    return await crud.update_client(db, client, patch)


def missing_fields(client: Client) -> List[str]:
    missing = []
    if not client.dni:
        missing.append("DNI")
    if not client.address:
        missing.append("dirección de entrega")
    return missing


def is_complete(client: Client) -> bool:
    return not missing_fields(client)
