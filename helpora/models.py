from helpora.extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from sqlalchemy import CheckConstraint, UniqueConstraint
import enum
import json


class UserRole(enum.Enum):
    CUSTOMER = 'customer'
    VOLUNTEER = 'volunteer'
    ADMIN = 'admin'


class AccountStatus(enum.Enum):
    ACTIVE = 'active'
    SUSPENDED = 'suspended'
    PENDING = 'pending'


class RequestStatus(enum.Enum):
    REQUESTED = 'requested'
    ACCEPTED = 'accepted'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    PAID = 'paid'
    CANCELLED = 'cancelled'
    DECLINED = 'declined'


# Money view carried on the request itself.
# Written only by the escrow service, next to Payment.status.
class RequestPaymentStatus(enum.Enum):
    PENDING = 'pending'
    HELD = 'held'
    RELEASED = 'released'
    REFUNDED = 'refunded'
    FAILED = 'failed'


class UrgencyLevel(enum.Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class PaymentStatus(enum.Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RELEASED = 'released'
    REFUNDED = 'refunded'
    ESCROW = 'escrow'


class PaymentMethod(enum.Enum):
    BANK_TRANSFER = 'bank_transfer'
    PAYPAL = 'paypal'
    CREDIT_CARD = 'credit_card'
    CASH = 'cash'
    UPI = 'upi'
    RAZORPAY = 'razorpay'


class PaymentProcessor(enum.Enum):
    MANUAL = 'manual'
    STRIPE = 'stripe'
    RAZORPAY = 'razorpay'


class ReviewStatus(enum.Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30), nullable=True)
    location = db.Column(db.String(120), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    # Comma separated, e.g. "plumbing,electrical"
    skills = db.Column(db.String(500), nullable=True)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.CUSTOMER)
    status = db.Column(
        db.Enum(AccountStatus),
        nullable=False,
        default=AccountStatus.ACTIVE)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    is_verified_provider = db.Column(
        db.Boolean, default=False, nullable=False)
    verified_at = db.Column(db.DateTime, nullable=True)

    # Derived from approved reviews, see services.rating_service
    average_rating = db.Column(db.Float, default=0.0, nullable=False)
    review_count = db.Column(db.Integer, default=0, nullable=False)
    services_completed = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.email}>'


class ServiceRequest(db.Model):
    __tablename__ = 'service_requests'

    id = db.Column(db.Integer, primary_key=True)
    # Anonymous submissions leave user_id empty
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    volunteer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)

    user_name = db.Column(db.String(100), nullable=False)
    contact = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    service_category = db.Column(db.String(100), nullable=True)
    service_location = db.Column(db.String(200), nullable=True)
    scheduled_date = db.Column(db.Date, nullable=True)
    scheduled_time = db.Column(db.String(20), nullable=True)
    urgency_level = db.Column(
        db.Enum(UrgencyLevel),
        default=UrgencyLevel.MEDIUM,
        nullable=False)

    status = db.Column(
        db.Enum(RequestStatus),
        default=RequestStatus.REQUESTED,
        nullable=False,
        index=True)
    payment_status = db.Column(
        db.Enum(RequestPaymentStatus),
        default=RequestPaymentStatus.PENDING,
        nullable=False)
    payment_intent_id = db.Column(db.String(100), nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True)

    refund_requested = db.Column(db.Boolean, default=False, nullable=False)
    admin_override = db.Column(db.Boolean, default=False, nullable=False)
    is_completed_by_helper = db.Column(
        db.Boolean, default=False, nullable=False)
    is_confirmed_by_user = db.Column(
        db.Boolean, default=False, nullable=False)
    dispute_raised = db.Column(db.Boolean, default=False, nullable=False)
    viewed_by_helper = db.Column(db.Boolean, default=False, nullable=False)
    is_flagged = db.Column(db.Boolean, default=False, nullable=False)
    flag_reason = db.Column(db.String(500), nullable=True)

    release_date = db.Column(db.DateTime, nullable=True)
    cancel_deadline = db.Column(db.DateTime, nullable=False)

    rating = db.Column(db.Integer, nullable=True)
    feedback = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    # Relationships
    user = db.relationship('User', foreign_keys=[user_id])
    volunteer = db.relationship('User', foreign_keys=[volunteer_id])
    status_history = db.relationship(
        'RequestStatusEntry',
        backref='request',
        order_by='RequestStatusEntry.id',
        cascade='all, delete-orphan')
    payments = db.relationship(
        'Payment',
        backref='service_request',
        lazy='dynamic',
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint(
            'rating IS NULL OR (rating >= 1 AND rating <= 5)',
            name='check_request_rating_range'),
    )

    def __repr__(self):
        return f'<ServiceRequest {self.id} status={self.status}>'


class RequestStatusEntry(db.Model):
    __tablename__ = 'request_status_history'

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'service_requests.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    status = db.Column(db.Enum(RequestStatus), nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_by = db.Column(db.String(100), nullable=False, default='System')
    notes = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return (
            f"<RequestStatusEntry request={self.request_id} "
            f"status={self.status}>"
        )


class Payment(db.Model):
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'service_requests.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    volunteer_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    # Payer
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='INR')
    status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=False)
    processor = db.Column(
        db.Enum(PaymentProcessor),
        default=PaymentProcessor.MANUAL,
        nullable=False)
    # PaymentIntent id (Stripe) or payment id (Razorpay)
    processor_payment_id = db.Column(
        db.String(100), nullable=True, index=True)
    transaction_id = db.Column(db.String(100), nullable=True)
    refund_id = db.Column(db.String(100), nullable=True)
    receipt_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    payment_date = db.Column(db.DateTime, nullable=True)

    escrow = db.Column(db.Boolean, default=False, nullable=False)
    released = db.Column(db.Boolean, default=False, nullable=False)
    refunded = db.Column(db.Boolean, default=False, nullable=False)
    admin_fee = db.Column(db.Numeric(10, 2), default=0, nullable=False)
    payout_amount = db.Column(db.Numeric(10, 2), nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    volunteer = db.relationship('User', foreign_keys=[volunteer_id])
    payer = db.relationship('User', foreign_keys=[user_id])
    timeline = db.relationship(
        'PaymentTimelineEntry',
        backref='payment',
        order_by='PaymentTimelineEntry.id',
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('amount > 0', name='check_payment_amount_positive'),
    )

    def __repr__(self):
        return f'<Payment {self.id} status={self.status}>'


class PaymentTimelineEntry(db.Model):
    __tablename__ = 'payment_timeline'

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'payments.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    action = db.Column(db.String(100), nullable=False)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    by = db.Column(db.String(100), nullable=False, default='System')

    def __repr__(self):
        return f'<PaymentTimelineEntry {self.id} action={self.action}>'


class Review(db.Model):
    __tablename__ = 'reviews'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    provider_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=False)
    service_type = db.Column(db.String(100), nullable=False)
    status = db.Column(
        db.Enum(ReviewStatus),
        default=ReviewStatus.APPROVED,
        nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    author = db.relationship('User', foreign_keys=[user_id])
    provider = db.relationship('User', foreign_keys=[provider_id])

    __table_args__ = (
        CheckConstraint(
            'rating >= 1 AND rating <= 5',
            name='check_rating_range'),
        UniqueConstraint(
            'user_id',
            'provider_id',
            name='uq_user_provider_review'),
    )

    def __repr__(self):
        return f'<Review {self.id} for provider {self.provider_id}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., REQUEST_CANCEL, PAYMENT_RELEASE, WEBHOOK_STRIPE
    action = db.Column(db.String(100), nullable=False)
    # SERVICE_REQUEST, PAYMENT, REVIEW, USER
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
