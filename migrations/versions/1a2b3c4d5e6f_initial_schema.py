from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "1a2b3c4d5e6f"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns store member names
USER_ROLE = sa.Enum("CUSTOMER", "VOLUNTEER", "ADMIN", name="userrole")
ACCOUNT_STATUS = sa.Enum(
    "ACTIVE", "SUSPENDED", "PENDING", name="accountstatus")
REQUEST_STATUS = sa.Enum(
    "REQUESTED",
    "ACCEPTED",
    "IN_PROGRESS",
    "COMPLETED",
    "PAID",
    "CANCELLED",
    "DECLINED",
    name="requeststatus",
)
REQUEST_PAYMENT_STATUS = sa.Enum(
    "PENDING",
    "HELD",
    "RELEASED",
    "REFUNDED",
    "FAILED",
    name="requestpaymentstatus",
)
URGENCY_LEVEL = sa.Enum("LOW", "MEDIUM", "HIGH", name="urgencylevel")
PAYMENT_STATUS = sa.Enum(
    "PENDING",
    "COMPLETED",
    "CANCELLED",
    "RELEASED",
    "REFUNDED",
    "ESCROW",
    name="paymentstatus",
)
PAYMENT_METHOD = sa.Enum(
    "BANK_TRANSFER",
    "PAYPAL",
    "CREDIT_CARD",
    "CASH",
    "UPI",
    "RAZORPAY",
    name="paymentmethod",
)
PAYMENT_PROCESSOR = sa.Enum(
    "MANUAL", "STRIPE", "RAZORPAY", name="paymentprocessor")
REVIEW_STATUS = sa.Enum(
    "PENDING", "APPROVED", "REJECTED", name="reviewstatus")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("location", sa.String(length=120), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("skills", sa.String(length=500), nullable=True),
        sa.Column("role", USER_ROLE, nullable=False),
        sa.Column("status", ACCOUNT_STATUS, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("is_verified_provider", sa.Boolean(), nullable=False),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("average_rating", sa.Float(), nullable=False),
        sa.Column("review_count", sa.Integer(), nullable=False),
        sa.Column("services_completed", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=True)

    op.create_table(
        "service_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("volunteer_id", sa.Integer(), nullable=False),
        sa.Column("user_name", sa.String(length=100), nullable=False),
        sa.Column("contact", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("service_category", sa.String(length=100), nullable=True),
        sa.Column("service_location", sa.String(length=200), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.String(length=20), nullable=True),
        sa.Column("urgency_level", URGENCY_LEVEL, nullable=False),
        sa.Column("status", REQUEST_STATUS, nullable=False),
        sa.Column("payment_status", REQUEST_PAYMENT_STATUS, nullable=False),
        sa.Column("payment_intent_id", sa.String(length=100), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("refund_requested", sa.Boolean(), nullable=False),
        sa.Column("admin_override", sa.Boolean(), nullable=False),
        sa.Column("is_completed_by_helper", sa.Boolean(), nullable=False),
        sa.Column("is_confirmed_by_user", sa.Boolean(), nullable=False),
        sa.Column("dispute_raised", sa.Boolean(), nullable=False),
        sa.Column("viewed_by_helper", sa.Boolean(), nullable=False),
        sa.Column("is_flagged", sa.Boolean(), nullable=False),
        sa.Column("flag_reason", sa.String(length=500), nullable=True),
        sa.Column("release_date", sa.DateTime(), nullable=True),
        sa.Column("cancel_deadline", sa.DateTime(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="check_request_rating_range",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["volunteer_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("service_requests", schema=None) as batch_op:
        batch_op.create_index(
            "ix_service_requests_user_id", ["user_id"], unique=False)
        batch_op.create_index(
            "ix_service_requests_volunteer_id",
            ["volunteer_id"],
            unique=False)
        batch_op.create_index(
            "ix_service_requests_status", ["status"], unique=False)
        batch_op.create_index(
            "ix_service_requests_created_at", ["created_at"], unique=False)

    op.create_table(
        "request_status_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("status", REQUEST_STATUS, nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("updated_by", sa.String(length=100), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["request_id"], ["service_requests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table(
            "request_status_history", schema=None) as batch_op:
        batch_op.create_index(
            "ix_request_status_history_request_id",
            ["request_id"],
            unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("volunteer_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("processor", PAYMENT_PROCESSOR, nullable=False),
        sa.Column(
            "processor_payment_id", sa.String(length=100), nullable=True),
        sa.Column("transaction_id", sa.String(length=100), nullable=True),
        sa.Column("refund_id", sa.String(length=100), nullable=True),
        sa.Column("receipt_url", sa.String(length=500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("escrow", sa.Boolean(), nullable=False),
        sa.Column("released", sa.Boolean(), nullable=False),
        sa.Column("refunded", sa.Boolean(), nullable=False),
        sa.Column("admin_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("payout_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount > 0", name="check_payment_amount_positive"),
        sa.ForeignKeyConstraint(
            ["request_id"], ["service_requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["volunteer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index(
            "ix_payments_request_id", ["request_id"], unique=False)
        batch_op.create_index(
            "ix_payments_volunteer_id", ["volunteer_id"], unique=False)
        batch_op.create_index(
            "ix_payments_user_id", ["user_id"], unique=False)
        batch_op.create_index(
            "ix_payments_status", ["status"], unique=False)
        batch_op.create_index(
            "ix_payments_processor_payment_id",
            ["processor_payment_id"],
            unique=False)

    op.create_table(
        "payment_timeline",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("by", sa.String(length=100), nullable=False),
        sa.ForeignKeyConstraint(
            ["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("payment_timeline", schema=None) as batch_op:
        batch_op.create_index(
            "ix_payment_timeline_payment_id", ["payment_id"], unique=False)

    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("service_type", sa.String(length=100), nullable=False),
        sa.Column("status", REVIEW_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "rating >= 1 AND rating <= 5", name="check_rating_range"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "provider_id", name="uq_user_provider_review"),
    )
    with op.batch_alter_table("reviews", schema=None) as batch_op:
        batch_op.create_index(
            "ix_reviews_user_id", ["user_id"], unique=False)
        batch_op.create_index(
            "ix_reviews_provider_id", ["provider_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["actor_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index(
            "ix_audit_logs_created_at", ["created_at"], unique=False)


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("reviews")
    op.drop_table("payment_timeline")
    op.drop_table("payments")
    op.drop_table("request_status_history")
    op.drop_table("service_requests")
    op.drop_table("users")
