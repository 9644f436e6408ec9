import sys
import os
import streamlit as st
from functools import reduce

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from storefront.async_ops import Mutation, run_mutations
from storefront.catalog import Catalog
from storefront.codec import dump_orders, load_seed
from storefront.config import configure_logging, get_settings
from storefront.domain import (
    CLIENT,
    FUNCIONARIO,
    ORDER_STATUSES,
    PENDING_WHATSAPP,
    Address,
    Customer,
)
from storefront.lifecycle import can_cancel, can_edit, next_status
from storefront.pricing import (
    discount_badge,
    discount_tiers,
    format_money,
    has_active_discount,
    price_cart,
    price_variant,
    tier_previews,
)
from storefront.service import OrderService


# ============ Инициализация сервиса ============
@st.cache_resource
def get_service():
    settings = get_settings()
    configure_logging(settings.log_level)
    parents, variants, orders = load_seed(settings.seed_path)
    return OrderService(Catalog(parents, variants), orders, settings)


st.set_page_config(
    page_title="Tienda: pedidos y precios",
    page_icon="🛍️",
    layout="wide",
    initial_sidebar_state="expanded",
)

service = get_service()
catalog = service.catalog
currency = service.settings.currency_symbol

if "cart" not in st.session_state:
    st.session_state.cart = ()


# ============ Вспомогательные функции ============
def money(value: int) -> str:
    return format_money(value, currency)


def add_line(cart, variant_id: str, qty: int):
    """Чистая функция: новая корзина с добавленной позицией"""
    current = dict(cart)
    current[variant_id] = current.get(variant_id, 0) + qty
    return tuple(current.items())


def remove_line(cart, variant_id: str):
    return tuple((vid, q) for vid, q in cart if vid != variant_id)


def cart_lines(cart):
    """(variant, qty, parent) для price_cart; удалённые варианты пропускаются"""
    found = ((catalog.get_variant(vid), qty) for vid, qty in cart)
    return tuple(
        (m.value, qty, catalog.parent_of(m.value)) for m, qty in found if m.is_some()
    )


def show_result(result, success_text: str):
    if result.is_right:
        st.session_state.flash = success_text
        st.rerun()
    else:
        error = result.value
        st.error(f"❌ {error.code}: {error.message}")


# ============ HEADER ============
st.title("🛍️ Магазин: цены, скидки и заказы")
st.caption(f"Префикс заказов: {service.settings.order_prefix} | Валюта: {currency}")

# ============ SIDEBAR - Навигация ============
with st.sidebar:
    st.header("📂 Навигация")
    page = st.radio(
        "Выберите раздел:",
        [
            "🏪 Каталог",
            "🛒 Корзина",
            "🧾 Заказы",
            "🚀 Пакетные операции",
            "📦 Склад",
        ],
        label_visibility="collapsed",
    )

    st.divider()
    st.markdown("### 📊 Заказы по статусам")
    for status in ORDER_STATUSES:
        st.write(f"{status}: **{len(service.orders_by_status(status))}**")


# ============ PAGE: КАТАЛОГ ============
if page == "🏪 Каталог":
    st.header("🏪 Каталог товаров")

    parents = catalog.parents()
    selected = st.selectbox(
        "📂 Товар", ["Все"] + [p.name for p in parents], key="catalog_parent"
    )
    only_discounts = st.checkbox("Только со скидкой", key="catalog_discounts")

    variants = (
        catalog.variants()
        if selected == "Все"
        else catalog.variants_of(next(p.id for p in parents if p.name == selected))
    )
    if only_discounts:
        variants = tuple(
            v for v in variants if has_active_discount(v, catalog.parent_of(v))
        )

    st.info(f"🔍 Найдено вариантов: **{len(variants)}**")
    st.divider()

    for v in variants:
        parent = catalog.parent_of(v)
        with st.container():
            cols = st.columns([4, 3, 2, 2])
            with cols[0]:
                st.markdown(f"**{v.name}**")
                st.caption(f"SKU {v.sku} | остаток {v.stock}")
                badge = discount_badge(v, parent, currency=currency)
                if badge:
                    st.markdown(f"🏷️ `{badge}`")
            with cols[1]:
                qty = st.number_input(
                    "Кол-во",
                    min_value=1,
                    value=1,
                    key=f"qty_{v.id}",
                    label_visibility="collapsed",
                )
                priced = price_variant(v, qty, parent)
                if priced.has_discount:
                    st.write(f"~~{money(priced.original_price)}~~ **{money(priced.final_price)}** c/u")
                    st.caption(priced.details)
                else:
                    st.write(f"**{money(priced.final_price)}** c/u")
            with cols[2]:
                rows = discount_tiers(v, parent, currency=currency)
                if rows:
                    st.table(
                        [
                            {"Кол-во": r.range, "Цена": r.price, "Скидка": r.discount}
                            for r in rows
                        ]
                    )
                previews = tier_previews(v, parent)
                if previews:
                    st.caption(
                        " | ".join(
                            f"{p.min_quantity}+: {money(p.price_per_unit)}" for p in previews
                        )
                    )
            with cols[3]:
                if st.button("➕ В корзину", key=f"add_{v.id}"):
                    st.session_state.cart = add_line(st.session_state.cart, v.id, qty)
                    st.success(f"✅ {v.name} × {qty}", icon="✅")
            st.divider()


# ============ PAGE: КОРЗИНА ============
elif page == "🛒 Корзина":
    st.header("🛒 Корзина")

    cart = st.session_state.cart

    if not cart:
        st.info("🛍️ Корзина пуста. Перейдите в каталог!")
    else:
        pricing = price_cart(cart_lines(cart))
        by_id = dict(pricing.lines)

        for vid, qty in cart:
            variant = catalog.get_variant(vid).get_or_else(None)
            if variant is None or vid not in by_id:
                continue
            result = by_id[vid]
            cols = st.columns([5, 2, 2, 1])
            with cols[0]:
                st.write(f"**{variant.name}**")
                if result.details:
                    st.caption(result.details)
            with cols[1]:
                st.write(f"× {qty}")
            with cols[2]:
                st.write(money(result.subtotal))
            with cols[3]:
                if st.button("🗑️", key=f"remove_{vid}"):
                    st.session_state.cart = remove_line(cart, vid)
                    st.rerun()

        st.divider()
        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Сумма", money(pricing.subtotal))
        with col2:
            st.metric("Скидка", money(pricing.total_discount))
        with col3:
            st.metric("Итого", money(pricing.total))
        st.caption("Доставка рассчитывается после подтверждения в WhatsApp")

        with st.form("checkout"):
            name = st.text_input("Имя")
            email = st.text_input("Email")
            phone = st.text_input("Телефон")
            street = st.text_input("Улица")
            number = st.text_input("Дом")
            city = st.text_input("Город")
            notes = st.text_area("Комментарий к заказу")
            submitted = st.form_submit_button("✅ Оформить заказ", type="primary")

        if submitted:
            address = Address(street, number, city) if street and city else None
            result = service.place_order(
                cart,
                Customer(name=name, email=email, phone=phone, address=address),
                customer_notes=notes or None,
            )
            if result.is_right:
                order = result.value
                st.session_state.cart = ()
                st.success(
                    f"🎉 Заказ {order.order_number} оформлен! Сумма: {money(order.total)}"
                )
                st.balloons()
            else:
                st.error(f"❌ {result.value.message}")


# ============ PAGE: ЗАКАЗЫ ============
elif page == "🧾 Заказы":
    st.header("🧾 Управление заказами")

    if "flash" in st.session_state:
        st.success(st.session_state.pop("flash"))

    status_filter = st.selectbox("Статус", ["Все"] + list(ORDER_STATUSES))
    orders = (
        service.orders()
        if status_filter == "Все"
        else service.orders_by_status(status_filter)
    )
    if not orders:
        st.info("Заказов нет")
        st.stop()

    numbers = [o.order_number for o in reversed(orders)]
    chosen = st.selectbox("Заказ", numbers)
    order = service.find_by_number(chosen).value

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Статус", order.status)
    with col2:
        st.metric("Сумма", money(order.subtotal))
    with col3:
        st.metric("Скидка", money(order.total_discount))
    with col4:
        st.metric("Итого", money(order.total))
    st.caption(
        f"Клиент: {order.customer.name} ({order.customer.phone}) | "
        f"доставка {money(order.shipping_cost)} | ревизия {order.revision}"
    )
    if order.customer_notes:
        st.info(order.customer_notes)
    if order.admin_notes:
        st.caption(order.admin_notes)

    st.table(
        [
            {
                "SKU": i.variant_snapshot.sku,
                "Товар": i.variant_snapshot.name,
                "Цена": money(i.price_per_unit),
                "Кол-во": i.quantity,
                "Скидка": money(i.discount),
                "Сумма": money(i.subtotal),
            }
            for i in order.items
        ]
    )

    revision = order.revision
    tab1, tab2, tab3, tab4 = st.tabs(
        ["✅ Статус", "✏️ Позиции", "🚚 Доставка", "❌ Отмена"]
    )

    with tab1:
        if order.status == PENDING_WHATSAPP:
            shipping = st.number_input("Стоимость доставки", min_value=0, step=1000, key="confirm_shipping")
            notes = st.text_input("Заметка", key="confirm_notes")
            if st.button("Подтвердить заказ", type="primary"):
                show_result(
                    service.confirm_order(order.id, int(shipping), notes or None, revision),
                    "Заказ подтверждён",
                )
        else:
            target = next_status(order.status)
            if target is None:
                st.info("Заказ в конечном статусе")
            else:
                notes = st.text_input("Заметка", key="advance_notes")
                if st.button(f"Перевести в {target}", type="primary"):
                    show_result(
                        service.advance_order_status(order.id, target, notes or None, revision),
                        f"Статус изменён на {target}",
                    )

    with tab2:
        if not can_edit(order):
            st.warning("Позиции можно менять только до отправки")
        else:
            edited = []
            for item in order.items:
                qty = st.number_input(
                    item.variant_snapshot.name,
                    min_value=0,
                    value=item.quantity,
                    key=f"edit_{order.id}_{item.variant_id}",
                )
                edited.append((item.variant_id, int(qty)))

            extra = st.selectbox(
                "Добавить вариант",
                ["-"] + [v.id for v in catalog.variants()],
                key=f"extra_{order.id}",
            )
            extra_qty = st.number_input("Кол-во", min_value=1, value=1, key=f"extra_qty_{order.id}")
            notes = st.text_input("Заметка", key="edit_notes")

            if st.button("Сохранить позиции"):
                lines = tuple((vid, q) for vid, q in edited if q > 0)
                if extra != "-":
                    lines = lines + ((extra, int(extra_qty)),)
                show_result(
                    service.edit_order_items(order.id, lines, notes or None, revision),
                    "Позиции обновлены",
                )

    with tab3:
        if not can_edit(order):
            st.warning("Доставку можно менять только до отправки")
        else:
            shipping = st.number_input(
                "Стоимость доставки",
                min_value=0,
                step=1000,
                value=order.shipping_cost,
                key="update_shipping",
            )
            if st.button("Обновить доставку"):
                show_result(
                    service.update_shipping_cost(order.id, int(shipping), revision),
                    "Доставка обновлена",
                )

    with tab4:
        actor = st.radio("Кто отменяет", [FUNCIONARIO, CLIENT], horizontal=True)
        if not can_cancel(order, actor):
            st.warning("Отмена недоступна")
        else:
            reason = st.text_input("Причина", key="cancel_reason")
            if st.button("Отменить заказ"):
                show_result(
                    service.cancel_order(order.id, reason or None, actor, revision),
                    "Заказ отменён, остатки возвращены на склад",
                )

    with st.expander("JSON"):
        st.code(dump_orders((order,)), language="json")


# ============ PAGE: ПАКЕТНЫЕ ОПЕРАЦИИ ============
elif page == "🚀 Пакетные операции":
    st.header("🚀 Пакетные операции")

    pending = service.orders_by_status(PENDING_WHATSAPP)
    active = tuple(o for o in service.orders() if not o.is_terminal)

    tab1, tab2 = st.tabs(["✅ Подтверждение", "➡️ Продвижение"])

    with tab1:
        chosen = st.multiselect("Заказы", [o.order_number for o in pending])
        shipping = st.number_input("Доставка для всех", min_value=0, step=1000)
        if st.button("Подтвердить выбранные", type="primary") and chosen:
            mutations = tuple(
                Mutation(
                    "confirm_order",
                    o.id,
                    {"shipping_cost": int(shipping), "expected_revision": o.revision},
                )
                for o in pending
                if o.order_number in chosen
            )
            results, summary = run_mutations(service, mutations)
            st.json(summary)

    with tab2:
        chosen = st.multiselect(
            "Заказы", [o.order_number for o in active], key="advance_batch"
        )
        if st.button("Следующий статус", key="advance_run") and chosen:
            mutations = tuple(
                Mutation(
                    "advance_order_status",
                    o.id,
                    {"new_status": next_status(o.status), "expected_revision": o.revision},
                )
                for o in active
                if o.order_number in chosen and o.status != PENDING_WHATSAPP
            )
            results, summary = run_mutations(service, mutations)
            st.json(summary)
            for result in results:
                if result.is_left:
                    st.error(f"{result.value.code}: {result.value.message}")


# ============ PAGE: СКЛАД ============
elif page == "📦 Склад":
    st.header("📦 Остатки и движения")

    total_units = reduce(lambda acc, v: acc + v.stock, catalog.variants(), 0)
    st.metric("Единиц на складе", total_units)

    st.table(
        [
            {
                "SKU": v.sku,
                "Вариант": v.name,
                "Остаток": v.stock,
                "Под заказ": "да" if v.allow_backorder else "нет",
            }
            for v in catalog.variants()
        ]
    )

    st.subheader("🔄 Журнал движений")
    movements = catalog.movements()
    if not movements:
        st.info("Движений пока нет")
    else:
        st.table(
            [
                {
                    "Вариант": m.variant_id,
                    "Тип": m.type,
                    "Кол-во": m.quantity,
                    "Было": m.previous_stock,
                    "Стало": m.new_stock,
                    "Описание": m.reason,
                }
                for m in reversed(movements)
            ]
        )
