"""Initial guard cost and pricing schema

Revision ID: 20261018_0900_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

This migration creates:
- payroll_parameter_versions: versioned statutory rate tables (JSON payload)
- bonus_catalog, salary_structures, salary_structure_bonuses
- installations, posts, guards, guard_assignments
- catalog_items, quotes, quote_parameters, quote_positions and the quote
  cost lines (uniforms, exams, cost items, meals, vehicles, infrastructure)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261018_0900_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


# Enum labels are the Python member names, as SQLAlchemy stores them
bonus_kind = postgresql.ENUM('FLAT', 'PERCENT', name='bonuskind', create_type=False)
gratification_mode = postgresql.ENUM('AUTO_PCT', 'CUSTOM', name='gratificationmode', create_type=False)
health_system = postgresql.ENUM('FONASA', 'ISAPRE', name='healthsystem', create_type=False)
contract_type = postgresql.ENUM('INDEFINITE', 'FIXED_TERM', name='contracttype', create_type=False)
calc_mode = postgresql.ENUM('PER_MONTH', 'PER_GUARD', name='calcmode', create_type=False)

ENUMS = (bonus_kind, gratification_mode, health_system, contract_type, calc_mode)


def _id():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                     server_default=sa.text('gen_random_uuid()'))


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _audit():
    return [
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('updated_by', sa.String(255), nullable=True),
    ]


def _quote_fk():
    return sa.Column('quote_id', postgresql.UUID(as_uuid=True),
                     sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False, index=True)


def _catalog_fk():
    return sa.Column('catalog_item_id', postgresql.UUID(as_uuid=True),
                     sa.ForeignKey('catalog_items.id', ondelete='SET NULL'), nullable=True)


def upgrade() -> None:
    """Create payroll and CPQ tables."""

    connection = op.get_bind()
    for enum in ENUMS:
        enum.create(connection, checkfirst=True)

    # ===========================================
    # RATE TABLES
    # ===========================================

    op.create_table(
        'payroll_parameter_versions',
        _id(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('effective_from', sa.Date, nullable=False, index=True),
        sa.Column('effective_until', sa.Date, nullable=True),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
        *_audit(),
    )

    # ===========================================
    # SALARY STRUCTURES
    # ===========================================

    op.create_table(
        'bonus_catalog',
        _id(),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('bonus_kind', bonus_kind, server_default='FLAT', nullable=False),
        sa.Column('default_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('default_percentage', sa.Numeric(7, 4), nullable=True,
                  comment='Percent of base salary (20 or 0.20)'),
        sa.Column('is_taxable', sa.Boolean, server_default='true', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'salary_structures',
        _id(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('base_salary', sa.Integer, nullable=False),
        sa.Column('meal_allowance', sa.Integer, server_default='0', nullable=False),
        sa.Column('transport_allowance', sa.Integer, server_default='0', nullable=False),
        sa.Column('gratification_mode', gratification_mode, server_default='AUTO_PCT', nullable=False),
        sa.Column('gratification_custom_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('effective_from', sa.Date, nullable=True),
        sa.Column('effective_until', sa.Date, nullable=True),
        *_timestamps(),
        *_audit(),
        sa.CheckConstraint('base_salary >= 0', name='ck_salary_structures_base_salary_non_negative'),
        sa.CheckConstraint('gratification_custom_amount >= 0',
                           name='ck_salary_structures_gratification_non_negative'),
    )

    op.create_table(
        'salary_structure_bonuses',
        _id(),
        sa.Column('structure_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('salary_structures.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('bonus_catalog_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('bonus_catalog.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('override_amount', sa.Integer, nullable=True),
        sa.Column('override_percentage', sa.Numeric(7, 4), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    # ===========================================
    # STAFFING HIERARCHY
    # ===========================================

    op.create_table(
        'installations',
        _id(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('client_name', sa.String(200), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('default_salary_structure_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('salary_structures.id', ondelete='SET NULL'), nullable=True),
        sa.Column('work_injury_rate', sa.Numeric(7, 4), nullable=True,
                  comment='Mutual rate adjusted for accident history; overrides the risk level'),
        sa.Column('work_injury_risk', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'posts',
        _id(),
        sa.Column('installation_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('installations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('salary_structure_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('salary_structures.id', ondelete='SET NULL'), nullable=True),
        sa.Column('base_salary', sa.Integer, server_default='0', nullable=False,
                  comment='Legacy pay for posts created before salary structures'),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'guards',
        _id(),
        sa.Column('rut', sa.String(12), nullable=False, unique=True, comment='Chilean national ID (RUT)'),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('afp_name', sa.String(50), nullable=False),
        sa.Column('health_system', health_system, server_default='FONASA', nullable=False),
        sa.Column('health_plan_pct', sa.Numeric(7, 4), nullable=True,
                  comment='Isapre contracted rate (7 or 0.07)'),
        sa.Column('contract_type', contract_type, server_default='INDEFINITE', nullable=False),
        sa.Column('num_dependents', sa.Integer, server_default='0', nullable=False),
        sa.Column('rut_salary_structure_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('salary_structures.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'guard_assignments',
        _id(),
        sa.Column('guard_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('guards.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('post_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('end_date', sa.Date, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    # ===========================================
    # CPQ
    # ===========================================

    op.create_table(
        'catalog_items',
        _id(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('type', sa.String(50), nullable=False, index=True),
        sa.Column('base_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('unit', sa.String(50), nullable=True),
        sa.Column('is_default', sa.Boolean, server_default='false', nullable=False),
        sa.Column('active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'quotes',
        _id(),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('client_name', sa.String(200), nullable=True),
        sa.Column('status', sa.String(30), server_default='draft', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('total_guards', sa.Integer, server_default='0', nullable=False),
        sa.Column('monthly_cost', sa.Integer, server_default='0', nullable=False),
        sa.Column('sale_price', sa.Integer, server_default='0', nullable=False),
        sa.Column('cost_summary', sa.JSON, nullable=True),
        *_timestamps(),
        *_audit(),
    )

    op.create_table(
        'quote_parameters',
        _id(),
        sa.Column('quote_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('margin_pct', sa.Numeric(7, 4), nullable=False),
        sa.Column('financial_rate_pct', sa.Numeric(7, 4), nullable=False),
        sa.Column('policy_rate_pct', sa.Numeric(7, 4), server_default='0', nullable=False),
        sa.Column('policy_coverage_pct', sa.Numeric(7, 4), nullable=False),
        sa.Column('contract_months', sa.Integer, server_default='12', nullable=False),
        sa.Column('policy_contract_months', sa.Integer, server_default='12', nullable=False),
        sa.Column('uniform_changes_per_year', sa.Integer, server_default='3', nullable=False),
        sa.Column('avg_tenure_months', sa.Integer, server_default='4', nullable=False),
        sa.Column('monthly_hours_standard', sa.Integer, server_default='180', nullable=False),
        sa.Column('sale_price_base', sa.Integer, nullable=True,
                  comment='Negotiated sale price; replaces the solved price when set'),
        *_timestamps(),
    )

    op.create_table(
        'quote_positions',
        _id(),
        _quote_fk(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('num_guards', sa.Integer, nullable=False),
        sa.Column('post_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('posts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('package_snapshot', sa.JSON, nullable=False),
        sa.Column('include_vacation_provision', sa.Boolean, server_default='false', nullable=False),
        sa.Column('include_severance_provision', sa.Boolean, server_default='false', nullable=False),
        sa.Column('work_injury_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('work_injury_risk', sa.String(50), nullable=True),
        sa.Column('rate_table_version', sa.String(100), nullable=True),
        sa.Column('employer_cost', sa.Integer, server_default='0', nullable=False),
        sa.Column('net_salary', sa.Integer, server_default='0', nullable=False),
        sa.Column('monthly_position_cost', sa.Integer, server_default='0', nullable=False),
        *_timestamps(),
        sa.CheckConstraint('num_guards >= 0', name='ck_quote_positions_num_guards_non_negative'),
    )

    for table in ('quote_uniform_items', 'quote_exam_items'):
        op.create_table(
            table,
            _id(),
            _quote_fk(),
            _catalog_fk(),
            sa.Column('unit_price_override', sa.Numeric(14, 2), nullable=True),
            sa.Column('active', sa.Boolean, server_default='true', nullable=False),
            *_timestamps(),
        )

    op.create_table(
        'quote_cost_items',
        _id(),
        _quote_fk(),
        _catalog_fk(),
        sa.Column('calc_mode', calc_mode, server_default='PER_MONTH', nullable=False),
        sa.Column('quantity', sa.Numeric(10, 2), server_default='1', nullable=False),
        sa.Column('unit_price_override', sa.Numeric(14, 2), nullable=True),
        sa.Column('is_enabled', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'quote_meals',
        _id(),
        _quote_fk(),
        sa.Column('meal_type', sa.String(100), nullable=False),
        sa.Column('meals_per_day', sa.Integer, server_default='0', nullable=False),
        sa.Column('days_of_service', sa.Integer, server_default='0', nullable=False),
        sa.Column('price_override', sa.Numeric(14, 2), nullable=True),
        sa.Column('is_enabled', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'quote_vehicles',
        _id(),
        _quote_fk(),
        sa.Column('rent_monthly', sa.Numeric(14, 2), server_default='0', nullable=False),
        sa.Column('maintenance_monthly', sa.Numeric(14, 2), server_default='0', nullable=False),
        sa.Column('km_per_day', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('days_per_month', sa.Numeric(5, 2), server_default='0', nullable=False),
        sa.Column('km_per_liter', sa.Numeric(8, 2), server_default='0', nullable=False),
        sa.Column('fuel_price', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('vehicles_count', sa.Integer, server_default='1', nullable=False),
        sa.Column('is_enabled', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'quote_infrastructure',
        _id(),
        _quote_fk(),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('rent_monthly', sa.Numeric(14, 2), server_default='0', nullable=False),
        sa.Column('has_fuel', sa.Boolean, server_default='false', nullable=False),
        sa.Column('fuel_liters_per_hour', sa.Numeric(8, 2), server_default='0', nullable=False),
        sa.Column('fuel_hours_per_day', sa.Numeric(5, 2), server_default='0', nullable=False),
        sa.Column('fuel_days_per_month', sa.Numeric(5, 2), server_default='0', nullable=False),
        sa.Column('fuel_price', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
        sa.Column('is_enabled', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    """Drop payroll and CPQ tables."""
    for table in (
        'quote_infrastructure', 'quote_vehicles', 'quote_meals', 'quote_cost_items',
        'quote_exam_items', 'quote_uniform_items', 'quote_positions', 'quote_parameters',
        'quotes', 'catalog_items', 'guard_assignments', 'guards', 'posts', 'installations',
        'salary_structure_bonuses', 'salary_structures', 'bonus_catalog',
        'payroll_parameter_versions',
    ):
        op.drop_table(table)

    # Drop enums
    for enum in reversed(ENUMS):
        sa.Enum(name=enum.name).drop(op.get_bind(), checkfirst=True)
