from decimal import Decimal
import logging

from flask import Blueprint, jsonify, request, session, current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    User, Plan, Investment, InvestmentStatus, Transaction, TransactionType,
    TransactionStatus, CommissionTransaction, PaymentMethod,
)
from blueprints.auth import session_required
from genealogy.layout import layout_tree
from genealogy.payment_processor import on_investment_purchased
from genealogy.referral_tree import ReferralTreeHelper
from genealogy.withdrawals import WithdrawalProcessor
from utils import money, parse_amount, validate_phone


logger = logging.getLogger(__name__)

bp = Blueprint('user', __name__, url_prefix="")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _current_user() -> User:
    return ReferralTreeHelper.get_user(session["user_id"])


def _requested_depth() -> int:
    """?depth= clamped to the configured maximum. Raises ValueError for junk."""
    max_depth = current_app.config.get("GENEALOGY_MAX_DEPTH", 5)
    raw = request.args.get("depth")
    if raw is None or raw == "":
        return max_depth
    try:
        depth = int(raw)
    except ValueError:
        raise ValueError("depth must be a non-negative integer")
    if depth < 0:
        raise ValueError("depth must be a non-negative integer")
    return min(depth, max_depth)


def _page_size() -> int:
    limit = request.args.get("limit", DEFAULT_PAGE_SIZE, type=int)
    return max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))


def _sum(column, *criteria) -> Decimal:
    total = db.session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()
    return money(total)


#==========================================================================
#       PLANS
#==========================================================================
@bp.route("/api/plans", methods=["GET"])
def list_plans():
    plans = Plan.query.filter_by(is_active=True).order_by(Plan.min_deposit.asc()).all()
    return jsonify({"plans": [plan.to_dict() for plan in plans]}), 200


#==========================================================================
#       DASHBOARD
#==========================================================================
@bp.route("/api/user/dashboard", methods=["GET"])
@session_required
def dashboard():
    user = _current_user()

    active_investments = user.investments.filter_by(status=InvestmentStatus.ACTIVE.value)
    total_invested = _sum(
        Investment.amount,
        Investment.user_id == user.id,
        Investment.status == InvestmentStatus.ACTIVE.value,
    )
    total_commissions = _sum(CommissionTransaction.amount, CommissionTransaction.beneficiary_id == user.id)
    total_profit = _sum(
        Investment.profit,
        Investment.user_id == user.id,
        Investment.status == InvestmentStatus.COMPLETED.value,
    )
    direct_recruits = User.query.filter_by(sponsor_id=user.id).count()

    return jsonify({
        "user": user.to_dict(),
        "stats": {
            "walletBalance": str(money(user.wallet.balance if user.wallet else 0)),
            "activeInvestments": active_investments.count(),
            "totalInvested": str(total_invested),
            "totalCommissions": str(total_commissions),
            "totalProfit": str(total_profit),
            "directRecruits": direct_recruits,
        },
        "referralLink": f"{current_app.config.get('APP_BASE_URL')}/register?ref={user.referral_code}",
    }), 200


#==========================================================================
#       INVESTMENTS
#==========================================================================
@bp.route("/api/user/investments", methods=["GET"])
@session_required
def list_investments():
    user = _current_user()
    query = user.investments
    status = request.args.get("status")
    if status:
        query = query.filter_by(status=status)
    investments = query.order_by(Investment.created_at.desc()).all()
    return jsonify({"investments": [inv.to_dict() for inv in investments]}), 200


@bp.route("/api/user/investments", methods=["POST"])
@session_required
def create_investment():
    """
    Buy a plan from the wallet balance.
    Expected JSON: {"planId": 1, "amount": "500.00"}
    """
    data = request.get_json(silent=True) or {}
    plan_id = data.get("planId")
    if not isinstance(plan_id, int) or isinstance(plan_id, bool):
        return jsonify({"error": "planId is required"}), 400
    amount = parse_amount(data.get("amount"))

    investment = on_investment_purchased(session["user_id"], plan_id, amount)
    return jsonify({
        "message": "Investment created",
        "investment": investment.to_dict(),
    }), 201


#==========================================================================
#       LEDGER
#==========================================================================
@bp.route("/api/user/transactions", methods=["GET"])
@session_required
def list_transactions():
    query = Transaction.query.filter_by(user_id=session["user_id"])
    tx_type = request.args.get("type")
    if tx_type:
        query = query.filter_by(type=tx_type)
    transactions = query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(_page_size()).all()
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


@bp.route("/api/user/commissions", methods=["GET"])
@session_required
def list_commissions():
    user_id = session["user_id"]
    commissions = (
        CommissionTransaction.query
        .filter_by(beneficiary_id=user_id)
        .order_by(CommissionTransaction.created_at.desc(), CommissionTransaction.id.desc())
        .limit(_page_size())
        .all()
    )

    by_level = (
        db.session.query(CommissionTransaction.level, func.sum(CommissionTransaction.amount))
        .filter(CommissionTransaction.beneficiary_id == user_id)
        .group_by(CommissionTransaction.level)
        .all()
    )

    return jsonify({
        "commissions": [c.to_dict() for c in commissions],
        "totalsByLevel": {str(level): str(money(total)) for level, total in by_level},
        "total": str(_sum(CommissionTransaction.amount, CommissionTransaction.beneficiary_id == user_id)),
    }), 200


#==========================================================================
#       GENEALOGY
#==========================================================================
@bp.route("/api/user/genealogy", methods=["GET"])
@session_required
def genealogy():
    user_id = session["user_id"]
    depth = _requested_depth()
    try:
        tree = ReferralTreeHelper.build_tree(user_id, depth)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Genealogy tree failed for user {user_id}: {e}")
        return jsonify({"tree": None, "empty": True, "message": "Genealogy is unavailable right now"}), 200

    return jsonify({"tree": tree.to_dict(), "empty": not tree.children, "depth": depth}), 200


@bp.route("/api/user/genealogy/layout", methods=["GET"])
@session_required
def genealogy_layout():
    user_id = session["user_id"]
    depth = _requested_depth()
    width = request.args.get("width", 1000, type=float)
    height = request.args.get("height", 600, type=float)
    try:
        tree = ReferralTreeHelper.build_tree(user_id, depth)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Genealogy layout failed for user {user_id}: {e}")
        tree = None

    layout = layout_tree(tree, width, height)
    return jsonify({"width": width, "height": height, **layout}), 200


@bp.route("/api/user/network", methods=["GET"])
@session_required
def network():
    summary = ReferralTreeHelper.get_network_summary(session["user_id"], _requested_depth())
    return jsonify({"success": True, "network": summary}), 200


@bp.route("/api/user/referrals", methods=["GET"])
@session_required
def referrals():
    """Every downline member within ?depth=, grouped by level."""
    by_level = ReferralTreeHelper.get_referrals_by_level(session["user_id"], _requested_depth())
    return jsonify({
        "referrals": {str(level): members for level, members in sorted(by_level.items())},
        "total": sum(len(members) for members in by_level.values()),
    }), 200


#==========================================================================
#       PROFILE
#==========================================================================
@bp.route("/api/user/profile", methods=["PUT"])
@session_required
def update_profile():
    """
    Expected JSON (any subset): {"firstName": "", "lastName": "", "country": "", "phone": ""}
    Username, email, referral code and sponsor cannot be changed here.
    """
    data = request.get_json(silent=True) or {}
    user = _current_user()

    changes = {}
    for key, attr in (("firstName", "first_name"), ("lastName", "last_name")):
        if key in data:
            changes[attr] = (data.get(key) or "").strip()
            if not changes[attr]:
                return jsonify({"error": f"{key} cannot be empty"}), 400
    if "country" in data:
        changes["country"] = (data.get("country") or "").strip() or None
    if "phone" in data:
        phone = (data.get("phone") or "").strip()
        if phone and not validate_phone(phone):
            return jsonify({"error": "Invalid phone number"}), 400
        changes["phone"] = phone or None

    for attr, value in changes.items():
        setattr(user, attr, value)
    db.session.commit()
    logger.info(f"User {user.id} updated their profile")
    return jsonify({"message": "Profile updated successfully", "user": user.to_dict()}), 200


@bp.route("/api/user/password", methods=["PUT"])
@session_required
def change_password():
    """Expected JSON: {"currentPassword": "", "newPassword": ""}"""
    data = request.get_json(silent=True) or {}
    current_password = data.get("currentPassword") or ""
    new_password = data.get("newPassword") or ""

    if not current_password or len(new_password) < 6:
        return jsonify({"error": "New password must be at least 6 characters long"}), 400

    user = _current_user()
    if not user.check_password(current_password):
        return jsonify({"error": "Current password is incorrect"}), 400

    user.set_password(new_password)
    db.session.commit()
    logger.info(f"User {user.id} changed their password")
    return jsonify({"message": "Password updated successfully"}), 200


#==========================================================================
#       WITHDRAWALS
#==========================================================================
@bp.route("/api/user/withdrawals", methods=["POST"])
@session_required
def request_withdrawal():
    """
    Expected JSON: {"amount": "50.00", "destination": "<wallet address>", "method": "crypto"}
    """
    data = request.get_json(silent=True) or {}
    amount = parse_amount(data.get("amount"))
    method = data.get("method") or PaymentMethod.CRYPTO.value
    if method not in {m.value for m in PaymentMethod}:
        return jsonify({"error": f"Unsupported method: {method}"}), 400

    withdrawal = WithdrawalProcessor.request_withdrawal(
        session["user_id"], amount, data.get("destination", ""), method
    )
    return jsonify({
        "message": "Withdrawal request submitted",
        "withdrawal": withdrawal.to_dict(),
    }), 201


@bp.route("/api/user/withdrawals", methods=["GET"])
@session_required
def withdrawal_history():
    withdrawals = (
        Transaction.query
        .filter_by(user_id=session["user_id"], type=TransactionType.WITHDRAWAL.value)
        .order_by(Transaction.created_at.desc())
        .limit(_page_size())
        .all()
    )
    pending = sum(
        (money(w.amount) for w in withdrawals if w.status == TransactionStatus.PENDING.value),
        Decimal("0.00"),
    )
    return jsonify({
        "withdrawals": [w.to_dict() for w in withdrawals],
        "pendingTotal": str(pending),
    }), 200
