"""Initial database schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    """Upgrade database schema."""
    # Route topology
    op.create_table('routes',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('origin', sa.String(length=255), nullable=False),
        sa.Column('destination', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(name) > 0', name='ck_route_name_not_empty'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_index(op.f('ix_routes_name'), 'routes', ['name'], unique=False)

    op.create_table('stops',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('route_id', _uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('ordinal', sa.Integer(), nullable=False),
        sa.CheckConstraint('ordinal >= 0', name='ck_stop_ordinal_non_negative'),
        sa.ForeignKeyConstraint(['route_id'], ['routes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('route_id', 'ordinal', name='uq_stop_route_ordinal')
    )
    op.create_index(op.f('ix_stops_route_id'), 'stops', ['route_id'], unique=False)

    op.create_table('fare_rules',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('route_id', _uuid(), nullable=False),
        sa.Column('from_ordinal', sa.Integer(), nullable=False),
        sa.Column('to_ordinal', sa.Integer(), nullable=False),
        sa.Column('base_price', sa.Integer(), nullable=False),
        sa.CheckConstraint('from_ordinal < to_ordinal', name='ck_fare_rule_segment_ordered'),
        sa.CheckConstraint('base_price >= 0', name='ck_fare_rule_price_non_negative'),
        sa.ForeignKeyConstraint(['route_id'], ['routes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('route_id', 'from_ordinal', 'to_ordinal', name='uq_fare_rule_segment')
    )
    op.create_index(op.f('ix_fare_rules_route_id'), 'fare_rules', ['route_id'], unique=False)

    # Seat inventory
    op.create_table('buses',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('plate', sa.String(length=32), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('capacity > 0', name='ck_bus_capacity_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plate')
    )
    op.create_index(op.f('ix_buses_plate'), 'buses', ['plate'], unique=False)

    op.create_table('seats',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('bus_id', _uuid(), nullable=False),
        sa.Column('seat_number', sa.String(length=10), nullable=False),
        sa.CheckConstraint('length(seat_number) > 0', name='ck_seat_number_not_empty'),
        sa.ForeignKeyConstraint(['bus_id'], ['buses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bus_id', 'seat_number', name='uq_seat_bus_number')
    )
    op.create_index(op.f('ix_seats_bus_id'), 'seats', ['bus_id'], unique=False)

    # Trips
    op.create_table('trips',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('route_id', _uuid(), nullable=False),
        sa.Column('bus_id', _uuid(), nullable=True),
        sa.Column('departure_at', sa.DateTime(), nullable=False),
        sa.Column('arrival_eta', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='SCHEDULED', nullable=False),
        sa.Column('boarding_closed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            'arrival_eta IS NULL OR arrival_eta > departure_at', name='ck_trip_arrival_after_departure'
        ),
        sa.ForeignKeyConstraint(['route_id'], ['routes.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['bus_id'], ['buses.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_trips_route_id'), 'trips', ['route_id'], unique=False)
    op.create_index(op.f('ix_trips_bus_id'), 'trips', ['bus_id'], unique=False)
    op.create_index(op.f('ix_trips_departure_at'), 'trips', ['departure_at'], unique=False)
    op.create_index(op.f('ix_trips_status'), 'trips', ['status'], unique=False)

    op.create_table('trip_seats',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('trip_id', _uuid(), nullable=False),
        sa.Column('seat_number', sa.String(length=10), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('last_changed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('trip_id', 'seat_number', name='uq_trip_seat')
    )
    op.create_index(op.f('ix_trip_seats_trip_id'), 'trip_seats', ['trip_id'], unique=False)

    # Holds and tickets
    op.create_table('seat_holds',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('trip_id', _uuid(), nullable=False),
        sa.Column('seat_number', sa.String(length=10), nullable=False),
        sa.Column('from_ordinal', sa.Integer(), nullable=False),
        sa.Column('to_ordinal', sa.Integer(), nullable=False),
        sa.Column('holder_id', sa.String(length=128), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='ACTIVE', nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('from_ordinal < to_ordinal', name='ck_hold_segment_ordered'),
        sa.CheckConstraint('length(holder_id) > 0', name='ck_hold_holder_not_empty'),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_seat_holds_trip_id'), 'seat_holds', ['trip_id'], unique=False)
    op.create_index(op.f('ix_seat_holds_holder_id'), 'seat_holds', ['holder_id'], unique=False)
    op.create_index(op.f('ix_seat_holds_expires_at'), 'seat_holds', ['expires_at'], unique=False)
    op.create_index(op.f('ix_seat_holds_status'), 'seat_holds', ['status'], unique=False)
    op.create_index(
        'ix_seat_holds_trip_seat_status', 'seat_holds', ['trip_id', 'seat_number', 'status'], unique=False
    )

    op.create_table('tickets',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('trip_id', _uuid(), nullable=False),
        sa.Column('hold_id', _uuid(), nullable=True),
        sa.Column('seat_number', sa.String(length=10), nullable=False),
        sa.Column('from_ordinal', sa.Integer(), nullable=False),
        sa.Column('to_ordinal', sa.Integer(), nullable=False),
        sa.Column('passenger_id', sa.String(length=128), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('passenger_type', sa.String(length=20), server_default='ADULT', nullable=False),
        sa.Column('discount_amount', sa.Integer(), server_default='0', nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='PENDING_PAYMENT', nullable=False),
        sa.Column('is_capacity_exception', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('no_show_fee', sa.Integer(), nullable=True),
        sa.Column('boarded_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('from_ordinal < to_ordinal', name='ck_ticket_segment_ordered'),
        sa.CheckConstraint('price >= 0', name='ck_ticket_price_non_negative'),
        sa.CheckConstraint('discount_amount >= 0', name='ck_ticket_discount_non_negative'),
        sa.CheckConstraint('length(passenger_id) > 0', name='ck_ticket_passenger_not_empty'),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['hold_id'], ['seat_holds.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.UniqueConstraint('hold_id')
    )
    op.create_index(op.f('ix_tickets_code'), 'tickets', ['code'], unique=False)
    op.create_index(op.f('ix_tickets_trip_id'), 'tickets', ['trip_id'], unique=False)
    op.create_index(op.f('ix_tickets_passenger_id'), 'tickets', ['passenger_id'], unique=False)
    op.create_index(op.f('ix_tickets_status'), 'tickets', ['status'], unique=False)
    op.create_index('ix_tickets_trip_seat_status', 'tickets', ['trip_id', 'seat_number', 'status'], unique=False)

    # Overbooking workflow
    op.create_table('overbooking_requests',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('trip_id', _uuid(), nullable=False),
        sa.Column('ticket_id', _uuid(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='PENDING', nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('requested_by', sa.String(length=128), nullable=False),
        sa.Column('resolved_by', sa.String(length=128), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_id')
    )
    op.create_index(op.f('ix_overbooking_requests_trip_id'), 'overbooking_requests', ['trip_id'], unique=False)
    op.create_index(op.f('ix_overbooking_requests_status'), 'overbooking_requests', ['status'], unique=False)
    op.create_index(
        op.f('ix_overbooking_requests_expires_at'), 'overbooking_requests', ['expires_at'], unique=False
    )

    # Parcels
    op.create_table('parcels',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('trip_id', _uuid(), nullable=True),
        sa.Column('sender_name', sa.String(length=255), nullable=False),
        sa.Column('sender_phone', sa.String(length=32), nullable=False),
        sa.Column('receiver_name', sa.String(length=255), nullable=False),
        sa.Column('receiver_phone', sa.String(length=32), nullable=False),
        sa.Column('price', sa.Integer(), server_default='0', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='CREATED', nullable=False),
        sa.Column('delivery_otp', sa.String(length=6), nullable=False),
        sa.Column('proof_url', sa.String(length=1024), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(delivery_otp) = 6', name='ck_parcel_otp_length'),
        sa.CheckConstraint('price >= 0', name='ck_parcel_price_non_negative'),
        sa.ForeignKeyConstraint(['trip_id'], ['trips.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index(op.f('ix_parcels_code'), 'parcels', ['code'], unique=False)
    op.create_index(op.f('ix_parcels_trip_id'), 'parcels', ['trip_id'], unique=False)
    op.create_index(op.f('ix_parcels_status'), 'parcels', ['status'], unique=False)

    # Idempotency records
    op.create_table('idempotency_records',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=100), nullable=False),
        sa.Column('actor_id', sa.String(length=128), nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(method) > 0', name='ck_idempotency_method_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.CheckConstraint('response_status_code >= 100', name='ck_idempotency_status_code_valid'),
        sa.CheckConstraint('response_status_code <= 599', name='ck_idempotency_status_code_max'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', 'method', 'actor_id', name='uq_idempotency_key_method_actor')
    )
    op.create_index(op.f('ix_idempotency_records_expires_at'), 'idempotency_records', ['expires_at'], unique=False)
    op.create_index(
        op.f('ix_idempotency_records_idempotency_key'), 'idempotency_records', ['idempotency_key'], unique=False
    )
    op.create_index(op.f('ix_idempotency_records_method'), 'idempotency_records', ['method'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('parcels')
    op.drop_table('overbooking_requests')
    op.drop_table('tickets')
    op.drop_table('seat_holds')
    op.drop_table('trip_seats')
    op.drop_table('trips')
    op.drop_table('seats')
    op.drop_table('buses')
    op.drop_table('fare_rules')
    op.drop_table('stops')
    op.drop_table('routes')
