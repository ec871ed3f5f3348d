from functools import wraps
import logging

from flask import request, jsonify, session, Blueprint, current_app, g
from flask_login import login_user, logout_user
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import User, Wallet
from genealogy.referral_tree import ReferralTreeHelper
from utils import validate_email, validate_phone, generate_referral_code


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="")


def session_required(f):
    """JSON 401 unless a user id sits in the session; 403 once the account is deactivated."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get("user_id"):
            return jsonify({"error": "User not authenticated"}), 401
        user = getattr(g, "user", None)
        if user is not None and not user.is_active:
            session.clear()
            return jsonify({"error": "Account is inactive"}), 403
        return f(*args, **kwargs)

    return decorated_function


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/api/signup", methods=["POST"])
def signup():
    """
    Create a new user and attach them under the sponsor whose referral code
    they supplied. The sponsor link is set once, here, and never changes.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Invalid or missing JSON body"}), 400

    username = data.get("username", "").strip()
    first_name = data.get("firstName", "").strip()
    last_name = data.get("lastName", "").strip()
    email = data.get("email", "").strip().lower()
    phone = data.get("phone", "").strip()
    country = data.get("country", "").strip() or None
    password = data.get("password", "")
    referral_code = data.get("referralCode", "").strip().upper()

    # -----------------------------------------
    #  BASIC VALIDATION
    # -----------------------------------------
    if not username or not first_name or not last_name or not email or not password:
        return jsonify({"error": "All fields are required"}), 400
    if not validate_email(email):
        return jsonify({"error": "Invalid email address"}), 400
    if phone and not validate_phone(phone):
        return jsonify({"error": "Invalid phone number"}), 400
    if len(password) < 6:
        return jsonify({"error": "Password must be at least 6 characters"}), 400

    exists = User.query.filter((User.email == email) | (User.username == username)).first()
    if exists:
        return jsonify({"error": "Email or username already registered"}), 400

    # -----------------------------------------
    #  HANDLE REFERRAL CODE
    # -----------------------------------------
    sponsor = None
    if referral_code:
        sponsor = User.query.filter_by(referral_code=referral_code).first()
        valid, message = ReferralTreeHelper.validate_sponsor(sponsor)
        if not valid:
            return jsonify({"error": message}), 400

    try:
        new_user = User(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone or None,
            country=country,
            referral_code=generate_referral_code(
                lambda code: User.query.filter_by(referral_code=code).first() is not None
            ),
            sponsor_id=sponsor.id if sponsor else None,
        )
        new_user.set_password(password)
        db.session.add(new_user)
        db.session.flush()

        db.session.add(Wallet(user_id=new_user.id, currency=current_app.config.get("CURRENCY", "USD")))

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning(f"Signup conflict for {email}")
        return jsonify({"error": "Email or username already registered"}), 400
    except Exception:
        db.session.rollback()
        logger.exception("Signup failed")
        return jsonify({"error": "Signup failed. Please try again."}), 500

    current_app.logger.info(
        f"New user {new_user.id} registered under sponsor {new_user.sponsor_id}"
    )
    return jsonify({
        "status": "success",
        "message": "Signup successful",
        "user": new_user.to_dict(),
    }), 201

# --------------------------------------------------
#      Login Route
# --------------------------------------------------
@bp.route("/api/login", methods=["POST"])
def login():
    """
    Authenticate a user.
    Expected JSON:
    {
        "username": "",   (or email)
        "password": ""
    }
    """
    data = request.get_json(silent=True) or {}
    identifier = (data.get("username") or data.get("email") or "").strip()
    password = data.get("password", "")

    if not identifier or not password:
        return jsonify({"error": "Username/email and password are required"}), 400

    user = User.query.filter(
        (User.username == identifier) | (User.email == identifier.lower())
    ).first()

    if not user or not user.check_password(password):
        return jsonify({"error": "Invalid credentials"}), 401
    if not user.is_active:
        return jsonify({"error": "Account is inactive"}), 403

    session["user_id"] = user.id
    login_user(user)

    return jsonify({
        "message": "Login successful",
        "user": user.to_dict()
    }), 200

#-----------------------------------------------------------------------------------------------------
@bp.route("/api/logout", methods=["POST"])
def logout():
    """
    Destroy User session
    """
    logout_user()
    session.clear()
    return jsonify({"message": "Logged out successfully"}), 200

# --------------------------------------------------
# Current user (for frontend auto-login)
# --------------------------------------------------
@bp.route("/api/me", methods=["GET"])
def me():
    user_id = session.get("user_id")
    if not user_id:
        return jsonify({"authenticated": False}), 200

    user = db.session.get(User, user_id)
    if not user:
        session.clear()
        return jsonify({"authenticated": False}), 200

    return jsonify({
        "authenticated": True,
        "user": user.to_dict()
    }), 200
