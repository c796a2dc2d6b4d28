"""
Sales and inventory reports.

Sales reports count COMPLETED transactions whose status is completed or
partially_refunded, filtered on transaction_date. Date parameters are
YYYY-MM-DD and both ends are inclusive.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import parse_date_param
from clinicpos.core.deps import get_db, require_roles
from clinicpos.core.errors import ValidationError
from clinicpos.models.patient import Patient
from clinicpos.models.product import Product
from clinicpos.models.transaction import Transaction, TransactionItem
from clinicpos.models.user import User
from clinicpos.schemas.report import (
    DailySales, CategorySales, ProductSales, SalesTrendsSummary, SalesTrendsResponse,
    ItemSalesItem, ItemSalesResponse,
    CustomerProduct, CustomerValueItem, CustomerValueResponse,
    InventoryCostItem, CategoryCost, InventoryCostSummary, InventoryCostResponse
)

router = APIRouter()

SALE_STATUSES = ("completed", "partially_refunded")
DEFAULT_RANGE_DAYS = 30


def resolve_range(start_date: Optional[str], end_date: Optional[str]) -> Tuple[datetime, datetime]:
    """Return [start, end) covering both dates; defaults to the last 30 days"""
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    end = parse_date_param(end_date, "end_date") if end_date else today
    start = parse_date_param(start_date, "start_date") if start_date else end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
    if start > end:
        raise ValidationError("start_date must not be after end_date")
    return start, end + timedelta(days=1)


def sale_conditions(start: Optional[datetime], end: Optional[datetime]) -> list:
    conditions = [Transaction.type == "COMPLETED", Transaction.status.in_(SALE_STATUSES)]
    if start:
        conditions.append(Transaction.transaction_date >= start)
    if end:
        conditions.append(Transaction.transaction_date < end)
    return conditions


def item_cost_expression():
    return func.coalesce(TransactionItem.cost_price, Product.cost_price) * TransactionItem.quantity


def sold_items(conditions: list, *columns):
    return (
        select(*columns)
        .select_from(TransactionItem)
        .join(Transaction, TransactionItem.transaction_id == Transaction.id)
        .where(and_(*conditions))
    )


def _float(value: Any) -> float:
    return float(value) if value is not None else 0.0


@router.get("/sales-trends", response_model=SalesTrendsResponse)
async def sales_trends(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None)) -> Any:
    """Daily revenue/cost/profit plus category and top product breakdowns"""
    start, end = resolve_range(start_date, end_date)
    conditions = sale_conditions(start, end)
    day = func.date(Transaction.transaction_date)

    daily: Dict[str, DailySales] = {}
    cursor = start
    while cursor < end:
        key = cursor.strftime("%Y-%m-%d")
        daily[key] = DailySales(date=key)
        cursor += timedelta(days=1)

    revenue_rows = await db.execute(
        select(day, func.sum(Transaction.total_amount), func.count(Transaction.id))
        .where(and_(*conditions))
        .group_by(day)
    )
    for row_day, revenue, count in revenue_rows.all():
        entry = daily.get(str(row_day))
        if entry:
            entry.revenue = round(_float(revenue), 2)
            entry.transactions = int(count)

    cost_rows = await db.execute(
        select(day, func.sum(item_cost_expression()))
        .select_from(TransactionItem)
        .join(Transaction, TransactionItem.transaction_id == Transaction.id)
        .outerjoin(Product, TransactionItem.product_id == Product.id)
        .where(and_(*conditions))
        .group_by(day)
    )
    for row_day, cost in cost_rows.all():
        entry = daily.get(str(row_day))
        if entry:
            entry.cost = round(_float(cost), 2)

    for entry in daily.values():
        entry.profit = round(entry.revenue - entry.cost, 2)

    category_rows = (await db.execute(
        sold_items(conditions, TransactionItem.item_type, func.sum(TransactionItem.total_price))
        .group_by(TransactionItem.item_type)
        .order_by(func.sum(TransactionItem.total_price).desc())
    )).all()
    item_revenue = sum(_float(r[1]) for r in category_rows)
    categories = [
        CategorySales(
            category=item_type,
            revenue=round(_float(revenue), 2),
            percentage=round(_float(revenue) / item_revenue * 100, 2) if item_revenue else 0)
        for item_type, revenue in category_rows[:5]
    ]

    product_rows = (await db.execute(
        sold_items(
            conditions,
            TransactionItem.name,
            func.sum(TransactionItem.total_price),
            func.sum(TransactionItem.quantity))
        .group_by(TransactionItem.name)
        .order_by(func.sum(TransactionItem.total_price).desc())
        .limit(5)
    )).all()
    top_products = [
        ProductSales(name=name, revenue=round(_float(revenue), 2), quantity=_float(quantity))
        for name, revenue, quantity in product_rows
    ]

    days = list(daily.values())
    total_revenue = round(sum(d.revenue for d in days), 2)
    total_cost = round(sum(d.cost for d in days), 2)
    total_transactions = sum(d.transactions for d in days)
    summary = SalesTrendsSummary(
        total_revenue=total_revenue,
        total_cost=total_cost,
        total_profit=round(total_revenue - total_cost, 2),
        total_transactions=total_transactions,
        average_order_value=round(total_revenue / total_transactions, 2) if total_transactions else 0)

    return SalesTrendsResponse(
        start_date=start.strftime("%Y-%m-%d"),
        end_date=(end - timedelta(days=1)).strftime("%Y-%m-%d"),
        daily=days,
        categories=categories,
        top_products=top_products,
        summary=summary)


ITEM_SORT_FIELDS = ("total_sales", "quantity_sold", "margin", "total_discount", "name", "last_sale_date")


@router.get("/item-sales", response_model=ItemSalesResponse)
async def item_sales(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    min_sales: Optional[float] = Query(None, ge=0),
    sort_by: str = Query("total_sales"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$")) -> Any:
    """
    Sales per item name. margin is (sales - cost) / sales, or -1 when no
    cost is known for the item.
    """
    if sort_by not in ITEM_SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(ITEM_SORT_FIELDS)}")
    start = parse_date_param(start_date, "start_date") if start_date else None
    end = parse_date_param(end_date, "end_date") + timedelta(days=1) if end_date else None

    total_sales = func.sum(TransactionItem.total_price)
    query = (
        select(
            TransactionItem.name,
            TransactionItem.item_type,
            func.max(TransactionItem.product_id),
            func.sum(TransactionItem.quantity),
            total_sales,
            func.sum(TransactionItem.discount_amount),
            func.sum(item_cost_expression()),
            func.avg(TransactionItem.unit_price),
            func.max(Transaction.transaction_date))
        .select_from(TransactionItem)
        .join(Transaction, TransactionItem.transaction_id == Transaction.id)
        .outerjoin(Product, TransactionItem.product_id == Product.id)
        .where(and_(*sale_conditions(start, end)))
        .group_by(TransactionItem.name, TransactionItem.item_type)
    )
    if min_sales is not None:
        query = query.having(total_sales >= min_sales)

    items = []
    for name, item_type, product_id, quantity, sales, discount, cost, average_price, last_sale in (await db.execute(query)).all():
        sales = _float(sales)
        if cost is None:
            margin = -1.0
        else:
            margin = round((sales - _float(cost)) / sales, 4) if sales else 0.0
        items.append(ItemSalesItem(
            name=name,
            item_type=item_type,
            product_id=product_id,
            quantity_sold=_float(quantity),
            total_sales=round(sales, 2),
            total_discount=round(_float(discount), 2),
            total_cost=round(_float(cost), 2) if cost is not None else None,
            average_list_price=round(_float(average_price), 2),
            margin=margin,
            last_sale_date=last_sale))

    reverse = sort_order == "desc"
    if sort_by == "name":
        items.sort(key=lambda i: i.name.lower(), reverse=reverse)
    elif sort_by == "last_sale_date":
        items.sort(key=lambda i: i.last_sale_date or datetime.min, reverse=reverse)
    else:
        items.sort(key=lambda i: getattr(i, sort_by), reverse=reverse)
    return ItemSalesResponse(items=items, total=len(items))


CUSTOMER_SORT_FIELDS = {
    "revenue": lambda c: c.total_revenue,
    "orders": lambda c: c.total_orders,
    "margin": lambda c: c.margin,
    "recent": lambda c: c.last_purchase,
    "frequency": lambda c: c.purchase_frequency,
}


def customer_key(transaction: Transaction) -> str:
    if transaction.customer_email:
        return transaction.customer_email.strip().lower()
    return (transaction.customer_name or "").strip()


@router.get("/customer-value", response_model=CustomerValueResponse)
async def customer_value(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    sort_by: str = Query("revenue"),
    limit: int = Query(50, ge=1, le=500)) -> Any:
    """Per-customer lifetime value, grouped by email or, without one, by name"""
    if sort_by not in CUSTOMER_SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(CUSTOMER_SORT_FIELDS)}")
    start = parse_date_param(start_date, "start_date") if start_date else None
    end = parse_date_param(end_date, "end_date") + timedelta(days=1) if end_date else None

    transactions = (await db.execute(
        select(Transaction).where(and_(*sale_conditions(start, end))).order_by(Transaction.transaction_date)
    )).scalars().all()

    product_ids = {i.product_id for t in transactions for i in t.items if i.product_id and i.cost_price is None}
    product_costs = {}
    if product_ids:
        rows = await db.execute(select(Product.id, Product.cost_price).where(Product.id.in_(list(product_ids))))
        product_costs = {pid: _float(cost) for pid, cost in rows.all()}

    groups: Dict[str, List[Transaction]] = defaultdict(list)
    for transaction in transactions:
        groups[customer_key(transaction)].append(transaction)

    patient_ids = {t.customer_id for t in transactions if t.customer_id}
    emails = {t.customer_email.strip().lower() for t in transactions if t.customer_email}
    patients_by_id, patients_by_email = {}, {}
    if patient_ids or emails:
        rows = await db.execute(select(Patient).where(
            Patient.id.in_(list(patient_ids)) | func.lower(Patient.email).in_(list(emails))))
        for patient in rows.scalars().all():
            patients_by_id[patient.id] = patient
            if patient.email:
                patients_by_email[patient.email.lower()] = patient

    now = datetime.utcnow()
    customers = []
    for key, orders in groups.items():
        latest = orders[-1]
        revenue = sum(_float(t.total_amount) for t in orders)
        discount = sum(
            _float(t.discount_amount) + sum(_float(i.discount_amount) for i in t.items) for t in orders)
        cost = 0.0
        product_totals: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0.0])
        for item in (i for t in orders for i in t.items):
            unit_cost = item.cost_price if item.cost_price is not None else product_costs.get(item.product_id)
            cost += _float(unit_cost) * _float(item.quantity)
            product_totals[item.name][0] += _float(item.quantity)
            product_totals[item.name][1] += _float(item.total_price)

        first_purchase = orders[0].transaction_date
        last_purchase = latest.transaction_date
        active_days = max((last_purchase - first_purchase).days, 1)
        patient = patients_by_id.get(latest.customer_id) or patients_by_email.get(
            (latest.customer_email or "").strip().lower())
        top_products = sorted(product_totals.items(), key=lambda p: p[1][1], reverse=True)[:5]

        customers.append(CustomerValueItem(
            customer_key=key,
            customer_name=latest.customer_name,
            customer_email=latest.customer_email,
            customer_id=patient.id if patient else latest.customer_id,
            membership_tier=patient.membership_tier if patient else None,
            total_revenue=round(revenue, 2),
            total_orders=len(orders),
            average_order_value=round(revenue / len(orders), 2),
            total_discount=round(discount, 2),
            total_cost=round(cost, 2),
            margin=round((revenue - cost) / revenue, 4) if revenue else 0,
            first_purchase=first_purchase,
            last_purchase=last_purchase,
            days_since_last_order=(now - last_purchase).days,
            purchase_frequency=round(len(orders) / active_days * 30, 2),
            preferred_payment_method=Counter(t.payment_method for t in orders).most_common(1)[0][0],
            top_products=[
                CustomerProduct(name=name, quantity=totals[0], revenue=round(totals[1], 2))
                for name, totals in top_products
            ]))

    customers.sort(key=CUSTOMER_SORT_FIELDS[sort_by], reverse=True)
    return CustomerValueResponse(items=customers[:limit], total=len(customers))


STOCK_STATUSES = ("out", "low", "optimal", "overstock")
INVENTORY_SORT_FIELDS = ("total_cost", "total_stock", "cost_price", "name")


def stock_status(stock: float, reorder_point: float) -> str:
    if stock <= 0:
        return "out"
    if stock <= reorder_point:
        return "low"
    if reorder_point > 0 and stock >= reorder_point * 5:
        return "overstock"
    return "optimal"


@router.get("/inventory-cost", response_model=InventoryCostResponse)
async def inventory_cost(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin", "manager")),
    category: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    sort_by: str = Query("total_cost"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$")) -> Any:
    """Stock value (stock x cost_price) of every product still carried"""
    if status and status not in STOCK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(STOCK_STATUSES)}")
    if sort_by not in INVENTORY_SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(INVENTORY_SORT_FIELDS)}")

    conditions = [Product.is_deleted == False, Product.status != "discontinued"]  # noqa: E712
    if category:
        conditions.append(Product.category == category)
    if supplier_id:
        conditions.append(Product.supplier_id == supplier_id)
    products = (await db.execute(select(Product).where(and_(*conditions)))).scalars().unique().all()

    items = []
    for product in products:
        stock = _float(product.current_stock)
        cost_price = _float(product.cost_price)
        reorder_point = _float(product.reorder_point)
        item = InventoryCostItem(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            category=product.category,
            unit_name=product.unit_name,
            supplier_name=product.supplier_name,
            cost_price=cost_price,
            total_stock=stock,
            total_cost=round(max(stock, 0) * cost_price, 2),
            reorder_point=reorder_point,
            stock_status=stock_status(stock, reorder_point))
        if not status or item.stock_status == status:
            items.append(item)

    reverse = sort_order == "desc"
    if sort_by == "name":
        items.sort(key=lambda i: i.name.lower(), reverse=reverse)
    else:
        items.sort(key=lambda i: getattr(i, sort_by), reverse=reverse)

    total_value = round(sum(i.total_cost for i in items), 2)
    by_category: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    for item in items:
        by_category[item.category or "Uncategorized"][0] += item.total_cost
        by_category[item.category or "Uncategorized"][1] += 1
    breakdown = [
        CategoryCost(
            category=name,
            total_cost=round(totals[0], 2),
            product_count=int(totals[1]),
            percentage=round(totals[0] / total_value * 100, 2) if total_value else 0)
        for name, totals in sorted(by_category.items(), key=lambda c: c[1][0], reverse=True)
    ]

    summary = InventoryCostSummary(
        total_products=len(items),
        total_inventory_value=total_value,
        average_cost_per_item=round(total_value / len(items), 2) if items else 0,
        low_stock_count=sum(1 for i in items if i.stock_status == "low"),
        out_of_stock_count=sum(1 for i in items if i.stock_status == "out"),
        category_breakdown=breakdown)
    return InventoryCostResponse(items=items, summary=summary)
