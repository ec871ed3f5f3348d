#======================================================================================
#
# ADMIN API
#
#=======================================================================================
from datetime import date
from decimal import Decimal
from functools import wraps
import logging

from flask import jsonify, request, Blueprint, session, abort
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import (
    User, Plan, Investment, InvestmentStatus, Transaction, TransactionType,
    TransactionStatus, CommissionTransaction, AuditLog,
)
from genealogy.config import CommissionConfigHelper
from genealogy.errors import NotFoundError, InvalidStateError
from genealogy.lifecycle import InvestmentLifecycle
from genealogy.payment_processor import on_deposit_confirmed, reject_deposit
from genealogy.withdrawals import WithdrawalProcessor
from utils import money, parse_amount

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - Checks that 'user_id' exists in session.
    - Fetches the user from the database (to get current role).
    - Aborts with 403 Forbidden if not an admin.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session:
            abort(403)

        user = db.session.get(User, session["user_id"])
        if not user or not user.is_admin:
            abort(403)

        return f(*args, **kwargs)

    return decorated_function


admin_bp = Blueprint('admin', __name__, url_prefix='')

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500


def _page_size() -> int:
    limit = request.args.get("limit", DEFAULT_PAGE_SIZE, type=int)
    return max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))


def _sum(column, *criteria) -> Decimal:
    return money(db.session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar())


@admin_bp.route("/admin/data", methods=["GET"])
@admin_required
def admin_data():
    today = date.today()

    pending_deposits = Transaction.query.filter_by(
        type=TransactionType.DEPOSIT.value, status=TransactionStatus.PENDING.value
    )
    pending_withdrawals = Transaction.query.filter_by(
        type=TransactionType.WITHDRAWAL.value, status=TransactionStatus.PENDING.value
    )

    return jsonify({
        "total_users": User.query.count(),
        "active_users": User.query.filter_by(is_active=True).count(),
        "daily_new_users": User.query.filter(func.date(User.created_at) == today.isoformat()).count(),
        "active_investments": Investment.query.filter_by(status=InvestmentStatus.ACTIVE.value).count(),
        "total_invested": str(_sum(Investment.amount, Investment.status == InvestmentStatus.ACTIVE.value)),
        "total_commissions": str(_sum(CommissionTransaction.amount)),
        "pending_deposits": pending_deposits.count(),
        "pending_withdrawals": pending_withdrawals.count(),
        "pending_withdrawal_amount": str(_sum(
            Transaction.amount,
            Transaction.type == TransactionType.WITHDRAWAL.value,
            Transaction.status == TransactionStatus.PENDING.value,
        )),
        "deposits": [tx.to_dict() for tx in pending_deposits.order_by(Transaction.created_at.asc()).all()],
        "withdrawals": [tx.to_dict() for tx in pending_withdrawals.order_by(Transaction.created_at.asc()).all()],
        "commission_schedule": CommissionConfigHelper.get_distribution_summary(),
    }), 200


#============================================================================================================
#       PLANS
#============================================================================================================
@admin_bp.route("/admin/plans", methods=["GET"])
@admin_required
def admin_list_plans():
    plans = Plan.query.order_by(Plan.min_deposit.asc()).all()
    return jsonify({"plans": [plan.to_dict() for plan in plans]}), 200


@admin_bp.route("/admin/plans", methods=["POST"])
@admin_required
def admin_create_plan():
    """
    Expected JSON:
    {"name": "", "description": "", "monthlyRate": "8.00", "minDeposit": "100",
     "maxDeposit": "4999", "durationDays": 30, "features": []}
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "Plan name is required"}), 400

    monthly_rate = parse_amount(data.get("monthlyRate"))
    min_deposit = parse_amount(data.get("minDeposit"))
    max_deposit = parse_amount(data.get("maxDeposit"))
    duration_days = data.get("durationDays", 30)
    if min_deposit > max_deposit:
        return jsonify({"error": "minDeposit cannot exceed maxDeposit"}), 400
    if not isinstance(duration_days, int) or isinstance(duration_days, bool) or duration_days <= 0:
        return jsonify({"error": "durationDays must be a positive integer"}), 400

    plan = Plan(
        name=name,
        description=data.get("description", ""),
        monthly_rate=monthly_rate,
        min_deposit=min_deposit,
        max_deposit=max_deposit,
        duration_days=duration_days,
        features=data.get("features") or [],
        is_active=bool(data.get("isActive", True)),
    )
    try:
        db.session.add(plan)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": f"Plan '{name}' already exists"}), 400

    logger.info(f"Plan {plan.id} '{plan.name}' created by admin {session['user_id']}")
    return jsonify({"plan": plan.to_dict()}), 201


@admin_bp.route("/admin/plans/<int:plan_id>/toggle", methods=["POST"])
@admin_required
def admin_toggle_plan(plan_id):
    plan = db.session.get(Plan, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    plan.is_active = not plan.is_active
    db.session.commit()
    return jsonify({"plan": plan.to_dict()}), 200


@admin_bp.route("/admin/plans/<int:plan_id>", methods=["PUT"])
@admin_required
def admin_update_plan(plan_id):
    """
    Partial update; accepts the same keys as plan creation.
    Running investments keep the rate they were bought at.
    """
    plan = db.session.get(Plan, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    data = request.get_json(silent=True) or {}

    changes = {}
    if "name" in data:
        changes["name"] = (data.get("name") or "").strip()
        if not changes["name"]:
            return jsonify({"error": "Plan name is required"}), 400
    if "description" in data:
        changes["description"] = data.get("description") or ""
    for key, attr in (("monthlyRate", "monthly_rate"), ("minDeposit", "min_deposit"), ("maxDeposit", "max_deposit")):
        if key in data:
            changes[attr] = parse_amount(data.get(key))
    if "durationDays" in data:
        duration_days = data.get("durationDays")
        if not isinstance(duration_days, int) or isinstance(duration_days, bool) or duration_days <= 0:
            return jsonify({"error": "durationDays must be a positive integer"}), 400
        changes["duration_days"] = duration_days
    if "features" in data:
        changes["features"] = data.get("features") or []
    if "isActive" in data:
        changes["is_active"] = bool(data.get("isActive"))

    min_deposit = money(changes.get("min_deposit", plan.min_deposit))
    max_deposit = money(changes.get("max_deposit", plan.max_deposit))
    if min_deposit > max_deposit:
        return jsonify({"error": "minDeposit cannot exceed maxDeposit"}), 400

    for attr, value in changes.items():
        setattr(plan, attr, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": f"Plan '{changes.get('name', plan.name)}' already exists"}), 400

    logger.info(f"Plan {plan.id} updated by admin {session['user_id']}: {sorted(changes)}")
    return jsonify({"message": "Plan updated successfully", "plan": plan.to_dict()}), 200


#============================================================================================================
#       MEMBERS
#============================================================================================================
@admin_bp.route("/admin/users", methods=["GET"])
@admin_required
def admin_list_users():
    """Optional ?search= matches username, email or name."""
    query = User.query
    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            User.username.ilike(pattern)
            | User.email.ilike(pattern)
            | User.first_name.ilike(pattern)
            | User.last_name.ilike(pattern)
        )
    users = query.order_by(User.created_at.desc(), User.id.desc()).limit(_page_size()).all()
    return jsonify({"users": [user.to_dict() for user in users], "total": query.count()}), 200


@admin_bp.route("/admin/users/<int:user_id>/toggle-status", methods=["PUT"])
@admin_required
def admin_toggle_user(user_id):
    """
    Expected JSON: {"active": false}
    Inactive members cannot log in or be chosen as a sponsor. Their place in
    the tree and their commission history are untouched.
    """
    data = request.get_json(silent=True) or {}
    active = data.get("active")
    if not isinstance(active, bool):
        return jsonify({"error": "active must be a boolean"}), 400

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    if user.id == session["user_id"] and not active:
        raise InvalidStateError("Admins cannot deactivate their own account")

    user.is_active = active
    db.session.add(AuditLog(
        actor_id=session["user_id"],
        action=f"set_user_active={active}",
        entity_type="user",
        entity_id=user.id,
        ip_address=request.remote_addr,
    ))
    db.session.commit()

    logger.info(f"User {user.id} {'activated' if active else 'deactivated'} by admin {session['user_id']}")
    return jsonify({
        "message": f"User {'activated' if active else 'deactivated'} successfully",
        "user": user.to_dict(),
    }), 200


#============================================================================================================
#       TRANSACTIONS
#============================================================================================================
@admin_bp.route("/admin/transactions", methods=["GET"])
@admin_bp.route("/admin/transactions/<tx_type>", methods=["GET"])
@admin_required
def admin_list_transactions(tx_type=None):
    """Platform ledger, newest first. Optional ?status= filter."""
    query = Transaction.query
    if tx_type is not None:
        if tx_type not in {t.value for t in TransactionType}:
            return jsonify({"error": f"Unknown transaction type: {tx_type}"}), 400
        query = query.filter_by(type=tx_type)
    status = request.args.get("status")
    if status and status != "all":
        query = query.filter_by(status=status)

    transactions = query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(_page_size()).all()
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


#============================================================================================================
#       DEPOSITS & WITHDRAWALS
#============================================================================================================
@admin_bp.route("/admin/deposits/<int:transaction_id>/approve", methods=["POST"])
@admin_required
def admin_approve_deposit(transaction_id):
    """Optional JSON: {"planId": 1} buys that plan with the deposit straight away."""
    data = request.get_json(silent=True) or {}
    deposit = db.session.get(Transaction, transaction_id)
    if deposit is None or deposit.type != TransactionType.DEPOSIT.value:
        raise NotFoundError(f"Deposit {transaction_id} not found")
    if deposit.status != TransactionStatus.PENDING.value:
        raise InvalidStateError(f"Deposit {transaction_id} is {deposit.status}")

    deposit.processed_by = session["user_id"]
    deposit.admin_notes = data.get("notes")
    transaction, investment = on_deposit_confirmed(
        deposit.user_id,
        deposit.amount,
        method=deposit.payment_method,
        reference=deposit.reference,
        plan_id=data.get("planId"),
    )
    return jsonify({
        "message": "Deposit approved",
        "deposit": transaction.to_dict(),
        "investment": investment.to_dict() if investment else None,
    }), 200


@admin_bp.route("/admin/deposits/<int:transaction_id>/reject", methods=["POST"])
@admin_required
def admin_reject_deposit(transaction_id):
    data = request.get_json(silent=True) or {}
    deposit = reject_deposit(transaction_id, session["user_id"], data.get("notes"))
    return jsonify({"message": "Deposit rejected", "deposit": deposit.to_dict()}), 200


@admin_bp.route("/admin/withdrawals/<int:transaction_id>/approve", methods=["POST"])
@admin_required
def admin_approve_withdrawal(transaction_id):
    data = request.get_json(silent=True) or {}
    withdrawal = WithdrawalProcessor.approve(transaction_id, session["user_id"], data.get("notes"))
    return jsonify({"message": "Withdrawal approved", "withdrawal": withdrawal.to_dict()}), 200


@admin_bp.route("/admin/withdrawals/<int:transaction_id>/reject", methods=["POST"])
@admin_required
def admin_reject_withdrawal(transaction_id):
    data = request.get_json(silent=True) or {}
    withdrawal = WithdrawalProcessor.reject(transaction_id, session["user_id"], data.get("notes"))
    return jsonify({"message": "Withdrawal rejected, funds returned", "withdrawal": withdrawal.to_dict()}), 200


#============================================================================================================
#       INVESTMENT LIFECYCLE
#============================================================================================================
@admin_bp.route("/admin/investments/<int:investment_id>/terminate", methods=["POST"])
@admin_required
def admin_terminate_investment(investment_id):
    """Expected JSON: {"reason": "", "refundPrincipal": false}"""
    data = request.get_json(silent=True) or {}
    try:
        investment = InvestmentLifecycle.get_investment(investment_id)
        InvestmentLifecycle.terminate(
            investment,
            data.get("reason", ""),
            actor_id=session["user_id"],
            refund_principal=bool(data.get("refundPrincipal", False)),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return jsonify({"message": "Investment terminated", "investment": investment.to_dict()}), 200


@admin_bp.route("/admin/investments/process-matured", methods=["POST"])
@admin_required
def admin_process_matured():
    completed = InvestmentLifecycle.process_matured()
    return jsonify({"completed": completed, "count": len(completed)}), 200
