"""Routes for the catalog, inventory, loyalty points, promotions, commissions and the audit log."""
from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, select
from sqlalchemy.orm import joinedload

from .errors import ValidationError
from .extensions import db
from .inventory import create_material, list_inventory, restock
from .models import AuditLog, Branch, Commission, Employee, Service, User
from .points import points_balance, points_history
from .promotions import list_promotions, validate_promotion
from .routes import active_branch_id, json_body, json_integer

bp_ext = Blueprint("api_ext", __name__)


def _pagination(default_limit: int = 20) -> tuple[int, int]:
    try:
        page = max(1, int(request.args.get("page", 1)))
        limit = min(50, max(1, int(request.args.get("limit", default_limit))))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers") from None
    return page, limit


# CATALOG
@bp_ext.get("/branches")
def list_branches() -> tuple[dict[str, object], int]:
    """Branches for the branch selector, by name.
    ---
    tags:
      - Catalog
    responses:
      200:
        description: All branches
    """
    branches = db.session.execute(select(Branch).order_by(Branch.name.asc())).scalars().all()
    return jsonify({"items": [branch.to_dict() for branch in branches]}), 200


@bp_ext.get("/clients")
def list_clients() -> tuple[dict[str, object], int]:
    """Customers for the client picker, by name.
    ---
    tags:
      - Catalog
    """
    users = db.session.execute(select(User).order_by(User.name.asc(), User.user_id.asc())).scalars().all()
    return jsonify({"items": [user.to_dict_basic() for user in users]}), 200


@bp_ext.get("/employees")
def list_employees() -> tuple[dict[str, object], int]:
    """Employees of the active branch with their commission percent, by name.
    ---
    tags:
      - Catalog
    parameters:
      - name: X-Branch-Id
        in: header
        type: string
        required: true
    responses:
      200:
        description: Employees usable as employee_id when booking or closing
      400:
        description: Missing branch header
    """
    branch_id = active_branch_id()
    employees = db.session.execute(
        select(Employee)
        .where(Employee.branch_id == branch_id)
        .order_by(Employee.name.asc(), Employee.employee_id.asc())
    ).scalars().all()
    return jsonify({"items": [employee.to_dict() for employee in employees]}), 200


@bp_ext.get("/services")
def list_services() -> tuple[dict[str, object], int]:
    """Active services that can be booked, by name.
    ---
    tags:
      - Catalog
    """
    services = db.session.execute(
        select(Service).where(Service.is_active.is_(True)).order_by(Service.name.asc())
    ).scalars().all()
    return jsonify({"items": [service.to_dict() for service in services]}), 200


# INVENTORY
@bp_ext.get("/inventory")
def get_inventory() -> tuple[dict[str, object], int]:
    """Stock on hand at the active branch.
    ---
    tags:
      - Inventory
    responses:
      200:
        description: Stock records with low-stock alert flag
    """
    branch_id = active_branch_id()
    return jsonify({"items": list_inventory(db.session, branch_id)}), 200


@bp_ext.post("/inventory/materials")
def add_material() -> tuple[dict[str, object], int]:
    """Register a new material and its initial stock at the active branch.
    ---
    tags:
      - Inventory
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            name:
              type: string
            unit:
              type: string
            initial_quantity:
              type: number
            minimum_quantity:
              type: number
            unit_cost_cents:
              type: integer
    responses:
      201:
        description: Material created
      400:
        description: Invalid input
      409:
        description: A material with that name already exists
    """
    branch_id = active_branch_id()
    data = json_body()
    unit_cost_cents = json_integer(data, "unit_cost_cents", default=0)

    material = create_material(
        db.session,
        branch_id,
        name=str(data.get("name") or ""),
        unit=str(data.get("unit") or ""),
        initial_quantity=data.get("initial_quantity", 0),
        minimum_quantity=data.get("minimum_quantity", 0),
        unit_cost_cents=unit_cost_cents,
    )
    return jsonify({"material": material.to_dict()}), 201


@bp_ext.post("/inventory/<material_id>/restock")
def restock_material(material_id: str) -> tuple[dict[str, object], int]:
    """Add stock of a material at the active branch.
    ---
    tags:
      - Inventory
    parameters:
      - in: path
        name: material_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          properties:
            quantity:
              type: number
    responses:
      200:
        description: New quantity on hand
      400:
        description: Quantity missing or not positive
      404:
        description: Material not stocked at this branch
    """
    branch_id = active_branch_id()
    data = json_body()
    if "quantity" not in data:
        raise ValidationError("quantity is required")
    quantity = restock(db.session, branch_id, material_id, data["quantity"])
    return jsonify({"material_id": material_id, "quantity": float(quantity)}), 200


# POINTS
@bp_ext.get("/points/history")
def get_points_history() -> tuple[dict[str, object], int]:
    """Points movements at the active branch, newest first.
    ---
    tags:
      - Points
    """
    branch_id = active_branch_id()
    return jsonify({"items": points_history(db.session, branch_id)}), 200


@bp_ext.get("/points/balance")
def get_points_balance() -> tuple[dict[str, object], int]:
    """Positive points balances per customer at the active branch.
    ---
    tags:
      - Points
    """
    branch_id = active_branch_id()
    return jsonify(points_balance(db.session, branch_id)), 200


# PROMOTIONS
@bp_ext.get("/promotions")
def get_promotions() -> tuple[dict[str, object], int]:
    """Promotions valid today at the active branch, best discount first.
    ---
    tags:
      - Promotions
    """
    branch_id = active_branch_id()
    return jsonify({"items": list_promotions(db.session, branch_id)}), 200


@bp_ext.post("/promotions/<promotion_id>/validate")
def check_promotion(promotion_id: str) -> tuple[dict[str, object], int]:
    """Validate a promotion against a cart and compute the discount.
    ---
    tags:
      - Promotions
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            service_ids:
              type: array
              items:
                type: string
            total_cents:
              type: integer
    responses:
      200:
        description: Validation result; valid is false with a message when the promotion does not apply
      400:
        description: Invalid input
    """
    branch_id = active_branch_id()
    data = json_body()
    service_ids = data.get("service_ids") or []
    if not isinstance(service_ids, list):
        raise ValidationError("service_ids must be a list")
    total_cents = json_integer(data, "total_cents")
    if total_cents < 0:
        raise ValidationError("total_cents cannot be negative")

    check = validate_promotion(db.session, promotion_id, branch_id, service_ids, total_cents)
    return jsonify(check.to_dict()), 200


# COMMISSIONS
@bp_ext.get("/commissions")
def get_commissions() -> tuple[dict[str, object], int]:
    """Commissions recorded at the active branch, newest first.
    ---
    tags:
      - Commissions
    """
    branch_id = active_branch_id()
    commissions = db.session.execute(
        select(Commission)
        .where(Commission.branch_id == branch_id)
        .options(joinedload(Commission.employee))
        .order_by(Commission.created_at.desc(), Commission.commission_id.desc())
    ).scalars().all()
    return jsonify({"items": [c.to_dict() for c in commissions]}), 200


# AUDIT
@bp_ext.get("/audit")
def get_audit_log() -> tuple[dict[str, object], int]:
    """Audit entries of the active branch with pagination.
    ---
    tags:
      - Audit
    parameters:
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 20
        maximum: 50
    """
    branch_id = active_branch_id()
    page, limit = _pagination()

    query = select(AuditLog).where(AuditLog.branch_id == branch_id)
    total = db.session.execute(
        select(func.count()).select_from(query.subquery())
    ).scalar_one()
    entries = db.session.execute(
        query.order_by(AuditLog.created_at.desc(), AuditLog.audit_id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return (
        jsonify({
            "items": [entry.to_dict() for entry in entries],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }),
        200,
    )
