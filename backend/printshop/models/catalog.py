from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class ServiceCategory(db.Model):
    __tablename__ = "service_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    slug = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
        }


class Service(db.Model):
    """
    A sellable print/branding service.

    requires_proof: orders must pass through proof approval before production.
    requires_booking: the service is delivered on-site and needs a booking slot.
    deposit_percentage_bps: fallback deposit rate when the quote has no tier.
    """
    __tablename__ = "services"
    __table_args__ = (
        db.Index("ix_services_category_active", "category_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("service_categories.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    requires_booking = db.Column(db.Boolean, nullable=False, default=False)
    requires_proof = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Authoritative storage in cents
    base_price_cents = db.Column(db.Integer, nullable=True)
    deposit_percentage_bps = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("ServiceCategory", backref=db.backref("services", lazy=True))

    def __repr__(self) -> str:
        return f"<Service id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "requires_booking": self.requires_booking,
            "requires_proof": self.requires_proof,
            "is_active": self.is_active,
            "base_price_cents": self.base_price_cents,
            "deposit_percentage_bps": self.deposit_percentage_bps,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ServiceOption(db.Model):
    """
    Configurable question asked when quoting a service.

    Structured columns (JSON):
    - choices: ["250", "500", ...] for select/radio fields
    - pricing_impact: one of
        {"per_choice": {"500": 2000, ...}}   cents added for the chosen value
        {"flat_cents": 500}                  cents added when a checkbox is ticked
        {"per_unit_cents": 12}               cents per unit for number fields
    - validation_rules: {"min": 50, "max": 10000} for number fields
    """
    __tablename__ = "service_options"
    __table_args__ = (
        db.UniqueConstraint("service_id", "field_key", name="uq_service_options_service_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    field_key = db.Column(db.String(100), nullable=False)
    label = db.Column(db.String(255), nullable=False)
    field_type = db.Column(db.String(16), nullable=False)  # text, number, select, radio, checkbox, textarea
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    help_text = db.Column(db.Text, nullable=True)

    choices = db.Column(db.JSON, nullable=True)
    pricing_impact = db.Column(db.JSON, nullable=True)
    validation_rules = db.Column(db.JSON, nullable=True)

    sort_order = db.Column(db.Integer, nullable=False, default=0)

    service = db.relationship("Service", backref=db.backref("options", lazy=True, order_by="ServiceOption.sort_order"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "field_key": self.field_key,
            "label": self.label,
            "field_type": self.field_type,
            "is_required": self.is_required,
            "help_text": self.help_text,
            "choices": self.choices,
            "pricing_impact": self.pricing_impact,
            "validation_rules": self.validation_rules,
            "sort_order": self.sort_order,
        }


class Tier(db.Model):
    """
    Service-level package chosen at quote time.

    revisions_allowed: 0 or the configured sentinel (999) means unlimited.
    All *_bps columns are basis points; price_multiplier_bps 10000 == 1.0x.
    """
    __tablename__ = "tiers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    slug = db.Column(db.String(64), nullable=False, unique=True)
    tagline = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    turnaround_days_min = db.Column(db.Integer, nullable=True)
    turnaround_days_max = db.Column(db.Integer, nullable=True)
    revisions_allowed = db.Column(db.Integer, nullable=True)
    rush_fee_bps = db.Column(db.Integer, nullable=False, default=0)
    deposit_percentage_bps = db.Column(db.Integer, nullable=True)
    price_multiplier_bps = db.Column(db.Integer, nullable=False, default=10_000)
    sla_response_hours = db.Column(db.Integer, nullable=True)

    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tier id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "tagline": self.tagline,
            "description": self.description,
            "is_active": self.is_active,
            "turnaround_days_min": self.turnaround_days_min,
            "turnaround_days_max": self.turnaround_days_max,
            "revisions_allowed": self.revisions_allowed,
            "rush_fee_bps": self.rush_fee_bps,
            "deposit_percentage_bps": self.deposit_percentage_bps,
            "price_multiplier_bps": self.price_multiplier_bps,
            "sla_response_hours": self.sla_response_hours,
            "sort_order": self.sort_order,
            "features": [f.to_dict() for f in self.features],
            "deliverables": [d.to_dict() for d in self.deliverables],
        }


class TierFeature(db.Model):
    __tablename__ = "tier_features"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("tiers.id"), nullable=False, index=True)
    group_name = db.Column(db.String(64), nullable=False)
    feature_key = db.Column(db.String(64), nullable=False)
    feature_label = db.Column(db.String(255), nullable=False)
    feature_value = db.Column(db.String(255), nullable=False)
    is_included = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    tier = db.relationship("Tier", backref=db.backref("features", lazy=True, order_by="TierFeature.sort_order"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "group_name": self.group_name,
            "feature_key": self.feature_key,
            "feature_label": self.feature_label,
            "feature_value": self.feature_value,
            "is_included": self.is_included,
        }


class TierDeliverable(db.Model):
    """Checklist item every order on this tier must complete before it is fulfilled."""
    __tablename__ = "tier_deliverables"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("tiers.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    # Category slug; NULL applies to every service
    service_category_filter = db.Column(db.String(128), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    tier = db.relationship("Tier", backref=db.backref("deliverables", lazy=True, order_by="TierDeliverable.sort_order"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "service_category_filter": self.service_category_filter,
            "sort_order": self.sort_order,
        }
