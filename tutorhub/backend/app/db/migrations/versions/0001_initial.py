from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> postgresql.ENUM:
    enum = postgresql.ENUM(*values, name=name, create_type=False)
    enum.create(op.get_bind(), checkfirst=True)
    return enum


def upgrade() -> None:
    user_role = _enum("userrole", "student", "teacher", "admin")
    teacher_status = _enum("teacherstatus", "pending", "active", "rejected")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), server_default=""),
        sa.Column("role", user_role, server_default="student"),
        sa.Column("credit_balance", sa.Numeric(10, 2), server_default="0.00"),
        sa.Column("referral_code", sa.String(length=10), unique=True),
        sa.Column("referred_by_code", sa.String(length=10)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "teachers",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("headline", sa.String(length=255)),
        sa.Column("status", teacher_status, server_default="pending"),
        sa.Column("current_balance", sa.Numeric(10, 2), server_default="0.00"),
    )

    op.create_table(
        "languages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("price_per_session", sa.Numeric(10, 2), server_default="0.00"),
        sa.Column("currency", sa.CHAR(length=3), server_default="USD"),
    )

    slot_status = _enum("slotstatus", "available", "booked", "full")

    op.create_table(
        "availability_slots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("language_id", sa.Integer(), sa.ForeignKey("languages.id")),
        sa.Column("start_time", sa.DateTime(timezone=True)),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("status", slot_status, server_default="available"),
        sa.Column("max_students", sa.Integer(), server_default="1"),
        sa.Column("current_students", sa.Integer(), server_default="0"),
        sa.CheckConstraint("max_students > 0", name="ck_slot_max_students_positive"),
        sa.CheckConstraint(
            "current_students >= 0 AND current_students <= max_students",
            name="ck_slot_capacity",
        ),
    )
    op.create_index("ix_availability_slots_teacher_id", "availability_slots", ["teacher_id"])
    op.create_index("ix_availability_slots_start_time", "availability_slots", ["start_time"])

    booking_status = _enum(
        "bookingstatus",
        "pending_payment",
        "confirmed",
        "completed",
        "unattended",
        "cancelled",
        "reschedule_requested",
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column(
            "availability_slot_id",
            sa.Integer(),
            sa.ForeignKey("availability_slots.id", ondelete="CASCADE"),
        ),
        sa.Column("status", booking_status, server_default="pending_payment"),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.CHAR(length=3), server_default="USD"),
        sa.Column("meeting_link", sa.String(length=255)),
        sa.Column("teacher_feedback", sa.Text()),
        sa.Column("proposed_start_time", sa.DateTime(timezone=True)),
        sa.Column("proposed_end_time", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"])
    op.create_index("ix_bookings_teacher_id", "bookings", ["teacher_id"])
    op.create_index("ix_bookings_availability_slot_id", "bookings", ["availability_slot_id"])

    op.create_table(
        "bundles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("language_id", sa.Integer(), sa.ForeignKey("languages.id")),
        sa.Column("number_of_classes", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.CHAR(length=3), server_default="USD"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
    )

    student_bundle_status = _enum("studentbundlestatus", "pending_payment", "active")

    op.create_table(
        "student_bundles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("bundle_id", sa.Integer(), sa.ForeignKey("bundles.id")),
        sa.Column("purchase_date", sa.DateTime(timezone=True)),
        sa.Column("remaining_classes", sa.Integer(), nullable=False),
        sa.Column("status", student_bundle_status, server_default="pending_payment"),
    )
    op.create_index("ix_student_bundles_student_id", "student_bundles", ["student_id"])

    payment_status = _enum("paymentstatus", "pending", "succeeded", "failed", "refunded")
    payment_provider = _enum("paymentprovider", "credit", "mpesa", "paypal")
    refund_status = _enum("refundstatus", "requested", "approved", "rejected")

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), unique=True),
        sa.Column(
            "student_bundle_id",
            sa.Integer(),
            sa.ForeignKey("student_bundles.id", ondelete="CASCADE"),
            unique=True,
        ),
        sa.Column("provider_order_id", sa.String(length=255), unique=True),
        sa.Column("merchant_request_id", sa.String(length=255), unique=True),
        sa.Column("provider_txn_id", sa.String(length=255), unique=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.CHAR(length=3), server_default="USD"),
        sa.Column("provider", payment_provider),
        sa.Column("status", payment_status, server_default="pending"),
        sa.Column("refund_status", refund_status),
        sa.Column("refund_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "(booking_id IS NULL) <> (student_bundle_id IS NULL)",
            name="ck_payment_single_target",
        ),
    )

    payout_status = _enum("payoutstatus", "pending", "complete", "rejected")

    op.create_table(
        "payout_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", payout_status, server_default="pending"),
        sa.Column("admin_notes", sa.Text()),
        sa.Column("requested_at", sa.DateTime(timezone=True)),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_payout_requests_teacher_id", "payout_requests", ["teacher_id"])

    referral_status = _enum("referralstatus", "pending", "completed")

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("referrer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column(
            "referred_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            unique=True,
        ),
        sa.Column("status", referral_status, server_default="pending"),
        sa.Column("reward_amount", sa.Numeric(10, 2), server_default="0.00"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("referrals")
    op.drop_index("ix_payout_requests_teacher_id", table_name="payout_requests")
    op.drop_table("payout_requests")
    op.drop_table("payments")
    op.drop_index("ix_student_bundles_student_id", table_name="student_bundles")
    op.drop_table("student_bundles")
    op.drop_table("bundles")
    op.drop_index("ix_bookings_availability_slot_id", table_name="bookings")
    op.drop_index("ix_bookings_teacher_id", table_name="bookings")
    op.drop_index("ix_bookings_student_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_availability_slots_start_time", table_name="availability_slots")
    op.drop_index("ix_availability_slots_teacher_id", table_name="availability_slots")
    op.drop_table("availability_slots")
    op.drop_table("languages")
    op.drop_table("teachers")
    op.drop_table("users")
    for name in (
        "referralstatus",
        "payoutstatus",
        "refundstatus",
        "paymentprovider",
        "paymentstatus",
        "studentbundlestatus",
        "bookingstatus",
        "slotstatus",
        "teacherstatus",
        "userrole",
    ):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
