# chatorders/replies.py
# Customer-facing texts (the storefronts talk Spanish, rioplatense register).
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .inventory import Shortage
from .models import Order

CONFIRM_HINT = "Si está OK respondé *CONFIRMAR* (o OK / dale / listo) o decime qué querés sumar/quitar."
EDIT_HINT = 'Para sumar: "sumar 1 coca". Para quitar: "quitar coca". Para cambiar: "cambiar coca a 3".'

GENERIC_FAILURE = "Uy, tuve un problema procesando tu mensaje 😕 Probemos de nuevo en un ratito."
ASK_ITEMS = "Decime productos y cantidades, ej: 2 coca, 3 galletitas."
UNREADABLE_ITEMS = "No pude leer los productos. Decime cada uno con su cantidad, ej: 2 coca 1.5L, 3 sprite."
CLARIFY = "No te entendí del todo 🙏 ¿Me lo decís de otra forma?"
CLOSED_TODAY = "No estamos tomando pedidos el día de hoy."
CLOSED_NOW = "No estamos tomando pedidos en este horario."

NO_PENDING_TO_CANCEL = "No encontré un pedido para cancelar."
NO_PENDING_TO_EDIT = "No encontré un pedido en revisión para editar. Pasame tu pedido con productos y cantidades 🙌"
NO_PENDING_TO_CONFIRM = "No encontré un pedido en revisión para confirmar 🙌"
NO_PENDING_TO_ACCEPT = "No encontré un pedido en revisión 🙌 Decime qué querés pedir."
EMPTY_ORDER_TO_CONFIRM = "Tu pedido está vacío. Decime qué querés pedir y lo armamos."
EMPTIED_BY_SHORTAGE = (
    "Dale ✅ Lo dejé sin esos productos porque no había stock.\n\n"
    "Tu pedido quedó vacío. ¿Querés pedir otra cosa?"
)
STOCK_RACE = (
    "Uy, justo se quedó sin stock mientras confirmábamos 😕 "
    "Decime si querés ajustar cantidades o cambiar productos."
)
NOTHING_LEFT = "No quedó ningún producto en el pedido. Decime qué querés agregar."


def money(value) -> str:
    amount = Decimal(str(value or 0))
    if amount == amount.to_integral_value():
        return f"${int(amount)}"
    return f"${amount.quantize(Decimal('0.01'))}"


def order_lines(order: Optional[Order], bullet: str = "-") -> str:
    if not order or not order.items:
        return "Pedido vacío"
    return "\n".join(
        f"{bullet} {it.quantity} x {it.product.name if it.product else 'Producto'}" for it in order.items
    )


def order_block(order: Order, bullet: str = "-") -> str:
    return (
        f"Pedido #{order.sequence_number} (estado: Falta revisión):\n"
        f"{order_lines(order, bullet)}\n"
        f"Total: {money(order.total_amount)}"
    )


def shortage_lines(shortages: Iterable[Shortage]) -> str:
    return "\n".join(f"• {s.name}: pediste {s.need}, hay {s.have}" for s in shortages)


def missing_profile(fields: List[str]) -> str:
    return (
        f"Para continuar necesito algunos datos: {' y '.join(fields)}.\n"
        "Enviame algo así:\nDNI: 12345678\nDirección: Calle 123, piso/depto."
    )


def cancelled(order: Order) -> str:
    return f"Cancelé el pedido #{order.sequence_number}. Avisame si querés armar otro."


def remove_what(order: Order) -> str:
    options = ", ".join(it.product.name for it in order.items) or "nada"
    return (
        '¿Qué querés quitar? Podés decir: "quitá coca" o "quitá 2 galletitas".\n\n'
        f"En tu pedido tengo: {options}"
    )


def remove_not_understood(candidate: str, order: Order) -> str:
    options = ", ".join(it.product.name for it in order.items) or "nada"
    return (
        f"No entendí qué querés quitar ({candidate}).\n\n"
        f"En tu pedido tengo: {options}\nDecime cuál saco."
    )


def removed(order: Order, product_name: str, removed_all: bool, qty: int) -> str:
    amount = "todas" if removed_all else str(qty)
    return f"Listo ✅ Saqué {amount} {product_name}.\n\n{order_block(order)}\n\n{CONFIRM_HINT}"


def already_confirmed(order: Order) -> str:
    return (
        "Ya estaba confirmado ✅ (stock ya reservado).\n\n"
        f"Pedido #{order.sequence_number}:\n{order_lines(order, '•')}\nTotal: {money(order.total_amount)}"
    )


def not_enough_stock(shortages: Iterable[Shortage]) -> str:
    return (
        f"No tengo stock suficiente para confirmar 😕\n\n{shortage_lines(shortages)}\n\n"
        "Decime si querés ajustar cantidades o reemplazar."
    )


def confirmed(order: Order, adjusted: bool = False) -> str:
    prefix = "Ajusté el pedido al stock disponible.\n" if adjusted else ""
    return (
        f"{prefix}Listo ✅ confirmé tu pedido y reservé el stock.\n\n"
        f"{order_block(order, '•')}"
    )


def unrecognised(missing: List[str], suggestions: List[str]) -> str:
    text = f"No pude reconocer: {', '.join(missing)}."
    if suggestions:
        text += f" Opciones que tengo: {' · '.join(suggestions)}."
    return text + ' Decime el nombre exacto como figura en el stock (ej: "yerba playadito 1kg").'


def order_review(order: Order, edited: bool, changes: str, shortages: List[Shortage]) -> str:
    prefix = ""
    if edited:
        prefix = (
            f"Dale. Como ya tenés un pedido en revisión (#{order.sequence_number}), "
            f"{changes} a ese mismo pedido.\n\n"
        )
    warning = ""
    if shortages:
        warning = (
            f"\n\nOjo, no tengo stock suficiente para todo:\n{shortage_lines(shortages)}\n"
            "Respondé OK y lo ajusto a lo disponible, o decime qué cambiás."
        )
    return (
        f"{prefix}Revisá si está bien 👇\n\n{order_block(order)}{warning}\n\n"
        f"Si está OK respondé *CONFIRMAR* (o OK / dale / listo).\n{EDIT_HINT}"
    )


def changes_text(mode: str, lines: List[Tuple[str, int]]) -> str:
    if not lines:
        return "sumé lo que me pediste"
    verb = "sumé" if mode == "merge" else "dejé"
    return ", ".join(f"{verb} {qty} x {name}" for name, qty in lines)


def pending_orders_list(orders: List[Order]) -> str:
    rows = []
    for o in orders[:3]:
        items = ", ".join(
            f"{it.quantity}x {it.product.name if it.product else 'Producto'}" for it in o.items
        ) or "sin ítems"
        rows.append(f"#{o.sequence_number} · {items}")
    return (
        "Tengo estos pedidos en revisión:\n" + "\n".join(rows) +
        "\nDecime qué producto querés sumar, quitar o cambiar y sobre cuál pedido (#)."
    )


PROFILE_SAVED = "¡Gracias! Ya guardé tus datos ✅ Decime qué querés pedir."
