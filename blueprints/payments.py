#==================================================================================================
#       DEPOSITS AND GATEWAY CALLBACKS
#==================================================================================================
import hashlib
import hmac
import logging

from flask import Blueprint, jsonify, request, session, current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from logger import payments_logger
from models import Transaction, TransactionType, TransactionStatus, PaymentMethod, WebhookEvent
from blueprints.auth import session_required
from genealogy.errors import GenealogyError
from genealogy.payment_processor import on_deposit_confirmed
from genealogy.wallet import WalletHelper
from utils import money, parse_amount, utcnow


logger = logging.getLogger(__name__)

bp = Blueprint("payments", __name__, url_prefix="/api/payments")

CALLBACK_PROVIDERS = {
    PaymentMethod.PAYPAL.value,
    PaymentMethod.PESAPAL.value,
    PaymentMethod.COINBASE.value,
}
SIGNATURE_HEADER = "X-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str) -> bool:
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)


#==================================================================================================
@bp.route("/methods", methods=["GET"])
def payment_methods():
    return jsonify({
        "currency": current_app.config.get("CURRENCY", "USD"),
        "minDeposit": str(money(current_app.config.get("MIN_DEPOSIT"))),
        "methods": [
            {"id": PaymentMethod.PAYPAL.value, "name": "PayPal", "type": "gateway"},
            {"id": PaymentMethod.PESAPAL.value, "name": "Pesapal", "type": "gateway"},
            {"id": PaymentMethod.COINBASE.value, "name": "Coinbase Commerce", "type": "gateway"},
            {
                "id": PaymentMethod.CRYPTO.value,
                "name": "Crypto transfer",
                "type": "manual",
                "walletAddress": current_app.config.get("CRYPTO_WALLET_ADDRESS"),
                "network": current_app.config.get("CRYPTO_NETWORK"),
            },
        ],
    }), 200


#==================================================================================================
@bp.route("/deposits", methods=["POST"])
@session_required
def create_deposit():
    """
    Manual crypto deposit. The user has already sent funds and supplies the
    transaction hash as proof; the row stays pending until an admin approves it.
    Expected JSON: {"amount": "100.00", "proof": "<tx hash>"}
    """
    data = request.get_json(silent=True) or {}
    amount = parse_amount(data.get("amount"))
    proof = (data.get("proof") or "").strip()
    user_id = session["user_id"]

    minimum = money(current_app.config.get("MIN_DEPOSIT", "10.00"))
    if amount < minimum:
        return jsonify({"error": f"Minimum deposit is {minimum}"}), 400
    if not proof:
        return jsonify({"error": "Payment proof (transaction hash) is required"}), 400

    try:
        wallet = WalletHelper.get_wallet(user_id, lock=False)
        deposit = Transaction(
            wallet_id=wallet.id,
            user_id=user_id,
            type=TransactionType.DEPOSIT.value,
            amount=amount,
            currency=wallet.currency,
            status=TransactionStatus.PENDING.value,
            payment_method=PaymentMethod.CRYPTO.value,
            reference=f"DEP-{user_id}-{utcnow().strftime('%Y%m%d%H%M%S%f')}",
            payment_proof=proof[:255],
            details=f"Crypto deposit on {current_app.config.get('CRYPTO_NETWORK')}",
        )
        db.session.add(deposit)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    payments_logger.info(f"Manual deposit {deposit.reference} submitted: user {user_id}, amount {amount}")
    return jsonify({
        "message": "Deposit submitted and awaiting confirmation",
        "deposit": deposit.to_dict(),
    }), 201


def _claim_event(provider, reference, data, signature):
    """
    Record the callback and claim it for processing.

    One row per (provider, reference). The first insert wins; a row whose earlier
    attempt failed can be claimed again by exactly one retry. Returns None when
    the event already succeeded or another request holds it.
    """
    event = WebhookEvent.query.filter_by(provider=provider, reference=reference).first()
    if event is None:
        event = WebhookEvent(
            provider=provider,
            event_type=data.get("eventType"),
            payload=data,
            signature=signature,
            reference=reference,
            status="pending",
        )
        db.session.add(event)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return None
        return event

    claimed = (
        WebhookEvent.query
        .filter(
            WebhookEvent.id == event.id,
            WebhookEvent.processed.is_(True),
            WebhookEvent.status == "failed",
        )
        .update({"processed": False, "status": "pending", "processed_at": None}, synchronize_session=False)
    )
    if not claimed:
        db.session.rollback()
        return None

    event.event_type = data.get("eventType")
    event.payload = data
    event.signature = signature
    db.session.commit()
    return event


#==================================================================================================
@bp.route("/callback/<provider>", methods=["POST"])
def payment_callback(provider):
    """
    Gateway confirmation. Body is signed with HMAC-SHA256 of the raw payload.
    Expected JSON:
    {
        "reference": "", "userId": 1, "amount": "100.00",
        "status": "completed", "eventType": "", "planId": null
    }
    """
    if provider not in CALLBACK_PROVIDERS:
        return jsonify({"error": "Unknown provider"}), 404

    body = request.get_data()
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not verify_signature(body, signature):
        payments_logger.warning(f"Invalid {provider} callback signature from {request.remote_addr}")
        return jsonify({"error": "Invalid signature"}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Invalid or missing JSON body"}), 400

    reference = data.get("reference")
    user_id = data.get("userId")
    status = (data.get("status") or "").lower()
    if not reference or not user_id or not status:
        return jsonify({"error": "reference, userId and status are required"}), 400

    event = _claim_event(provider, reference, data, signature)
    if event is None:
        payments_logger.info(f"{provider} callback {reference} already processed or in progress")
        return jsonify({"status": "acknowledged", "duplicate": True}), 200
    event_id = event.id

    if status != TransactionStatus.COMPLETED.value:
        event.mark_processed(success=False, remarks=f"Gateway status {status}")
        db.session.commit()
        payments_logger.info(f"{provider} callback {reference} not completed: {status}")
        return jsonify({"status": "acknowledged"}), 200

    try:
        amount = parse_amount(data.get("amount"))
        transaction, investment = on_deposit_confirmed(
            int(user_id),
            amount,
            method=provider,
            reference=reference,
            plan_id=data.get("planId"),
        )
    except (GenealogyError, ValueError) as e:
        event = db.session.get(WebhookEvent, event_id)
        event.mark_processed(success=False, remarks=str(e)[:255])
        db.session.commit()
        payments_logger.warning(f"{provider} callback {reference} rejected: {e}")
        return jsonify({"status": "rejected", "error": str(e)}), 400
    except Exception as e:
        # release the claim so the gateway retry is processed
        event = db.session.get(WebhookEvent, event_id)
        event.mark_processed(success=False, remarks=f"Unexpected error: {e}"[:255])
        db.session.commit()
        raise

    event = db.session.get(WebhookEvent, event_id)
    event.mark_processed(success=True, remarks=f"Deposit transaction {transaction.id}")
    db.session.commit()

    return jsonify({
        "status": "acknowledged",
        "transaction": transaction.to_dict(),
        "investment": investment.to_dict() if investment else None,
    }), 200
