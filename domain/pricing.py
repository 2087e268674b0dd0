"""Domain Service - stay-length tiers, package catalog and price arithmetic"""
import logging
import math
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple, Union

from domain.entities import Property
from domain.enums import PackageCategory
from domain.exceptions import ValidationError
from domain.value_objects import DateRange, PackageType, PricingTier, Quote

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

CENTS = Decimal("0.01")


# ============================================================================
# TIER TABLE
# ============================================================================

TIER_TABLE: List[PricingTier] = [
    PricingTier(tier_id="per_night", label="Per Night",
                min_nights=1, max_nights=1, multiplier=Decimal("1.0")),
    PricingTier(tier_id="three_nights", label="3 Night Package",
                min_nights=2, max_nights=3, multiplier=Decimal("0.9")),
    PricingTier(tier_id="weekly", label="Weekly Package",
                min_nights=4, max_nights=7, multiplier=Decimal("0.8")),
    PricingTier(tier_id="two_weeks", label="2X Weekly Package",
                min_nights=8, max_nights=13, multiplier=Decimal("0.7")),
    PricingTier(tier_id="three_weeks", label="3 Week Package",
                min_nights=14, max_nights=28, multiplier=Decimal("0.5")),
    PricingTier(tier_id="monthly", label="Monthly Package",
                min_nights=29, max_nights=365, multiplier=Decimal("0.7")),
]


def resolve_tier(nights: int, tiers: Sequence[PricingTier] = TIER_TABLE) -> PricingTier:
    """Map a stay length to its pricing tier.

    The first tier whose [min_nights, max_nights] contains ``nights`` wins.
    When nothing matches, the first tier of the table is returned so a quote
    can still be produced.
    """
    if isinstance(nights, bool) or not isinstance(nights, int) or nights < 1:
        raise ValidationError(f"Nights must be a positive integer, got {nights!r}")
    if not tiers:
        raise ValidationError("Tier table is empty")

    for tier in tiers:
        if tier.contains(nights):
            return tier

    fallback = tiers[0]
    logger.warning(
        "No pricing tier covers %d nights; falling back to '%s'",
        nights, fallback.tier_id
    )
    return fallback


def validate_tier_table(tiers: Sequence[PricingTier] = TIER_TABLE) -> List[str]:
    """List gaps and overlaps between consecutive tiers"""
    problems = []
    ordered = sorted(tiers, key=lambda t: t.min_nights)
    for tier in ordered:
        if tier.min_nights > tier.max_nights:
            problems.append(f"{tier.tier_id}: min_nights {tier.min_nights} > max_nights {tier.max_nights}")
    for previous, current in zip(ordered, ordered[1:]):
        if current.min_nights <= previous.max_nights:
            problems.append(
                f"{previous.tier_id} and {current.tier_id} overlap at "
                f"{current.min_nights}-{min(previous.max_nights, current.max_nights)} nights"
            )
        elif current.min_nights > previous.max_nights + 1:
            problems.append(
                f"gap between {previous.tier_id} and {current.tier_id}: "
                f"{previous.max_nights + 1}-{current.min_nights - 1} nights"
            )
    return problems


def nights_between(from_date: date, to_date: date) -> int:
    """Whole nights between two dates, never less than one"""
    return max(1, (to_date - from_date).days)


# ============================================================================
# PACKAGE CATALOG
# ============================================================================

PACKAGE_TYPES: Dict[str, PackageType] = {
    "per_night": PackageType(
        package_id="per_night",
        name="Per Night",
        description="Standard nightly rate for photo studio rental",
        multiplier=Decimal("1.0"),
        features=["Photo studio access", "Basic lighting equipment",
                  "Self-service setup", "Standard accommodation"],
        billing_product_id="per_night",
        min_nights=1, max_nights=1,
        category=PackageCategory.STANDARD,
    ),
    "luxury_night": PackageType(
        package_id="luxury_night",
        name="Luxury Night",
        description="Premium nightly rate with wine sommelier service",
        multiplier=Decimal("1.5"),
        features=["Premium photo studio access", "Professional lighting setup",
                  "Wine sommelier consultation", "Curated wine selection",
                  "Premium accommodation", "Priority service"],
        billing_product_id="luxury_night",
        min_nights=1, max_nights=1,
        is_hosted=True,
        category=PackageCategory.LUXURY,
    ),
    "three_nights": PackageType(
        package_id="three_nights",
        name="3 Nights Package",
        description="Three night stay with studio access",
        multiplier=Decimal("0.95"),
        features=["3 nights accommodation", "Photo studio access",
                  "Basic equipment included", "5% discount on total",
                  "Flexible scheduling"],
        billing_product_id="3nights",
        min_nights=3, max_nights=3,
        category=PackageCategory.STANDARD,
    ),
    "hosted_3nights": PackageType(
        package_id="hosted_3nights",
        name="Hosted 3 Nights",
        description="Premium 3-night experience with wine sommelier",
        multiplier=Decimal("1.4"),
        features=["3 nights premium accommodation", "Professional photo studio setup",
                  "Wine sommelier service", "Daily wine tastings",
                  "Dedicated host assistance", "Enhanced amenities", "Priority service"],
        billing_product_id="hosted3nights",
        min_nights=3, max_nights=3,
        is_hosted=True,
        category=PackageCategory.HOSTED,
    ),
    "weekly": PackageType(
        package_id="weekly",
        name="Weekly Package",
        description="Seven night stay with extended studio access",
        multiplier=Decimal("0.85"),
        features=["7 nights accommodation", "Extended photo studio access",
                  "Equipment storage included", "15% discount on total",
                  "Flexible project scheduling", "Priority booking for future stays"],
        billing_product_id="weekly",
        min_nights=7, max_nights=7,
        category=PackageCategory.STANDARD,
    ),
    "hosted_weekly": PackageType(
        package_id="hosted_weekly",
        name="Hosted Weekly",
        description="Premium week-long experience with dedicated support",
        multiplier=Decimal("1.3"),
        features=["7 nights premium accommodation", "Professional studio management",
                  "Wine sommelier service", "Weekly wine experience",
                  "Dedicated host support", "Enhanced amenities", "Priority service",
                  "Custom project planning"],
        billing_product_id="hosted_weekly",
        min_nights=7, max_nights=7,
        is_hosted=True,
        category=PackageCategory.HOSTED,
    ),
    "monthly": PackageType(
        package_id="monthly",
        name="Monthly Package",
        description="Extended month-long stay with winter benefits",
        multiplier=Decimal("0.7"),
        features=["30+ nights accommodation", "Unlimited studio access",
                  "Equipment storage", "30% discount on total",
                  "Winter heating included", "Extended stay perks",
                  "Priority booking", "Flexible cancellation"],
        billing_product_id="monthly",
        min_nights=30, max_nights=90,
        category=PackageCategory.STANDARD,
    ),
    "wine_package": PackageType(
        package_id="wine_package",
        name="Wine Sommelier Package",
        description="Specialized wine experience add-on for any stay",
        multiplier=Decimal("1.5"),
        features=["Professional wine sommelier", "Curated wine selection",
                  "Daily wine tastings", "Wine pairing consultation",
                  "Premium glassware provided", "Wine education sessions"],
        billing_product_id="wine_sommelier",
        category=PackageCategory.SPECIALTY,
    ),
}


def get_package(package_id: Optional[str]) -> Optional[PackageType]:
    if not package_id:
        return None
    return PACKAGE_TYPES.get(package_id)


def get_packages_by_category(category: PackageCategory) -> Dict[str, PackageType]:
    return {pid: pkg for pid, pkg in PACKAGE_TYPES.items() if pkg.category == category}


def package_for_duration(nights: int) -> Optional[str]:
    """Suggest the standard package matching an exact stay length"""
    if nights == 1:
        return "per_night"
    if nights == 3:
        return "three_nights"
    if nights == 7:
        return "weekly"
    if nights >= 30:
        return "monthly"
    return None


# ============================================================================
# PRICE ARITHMETIC
# ============================================================================

def _to_decimal(value: Number, name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    try:
        result = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{name} must be a number, got {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    if result < 0:
        raise ValidationError(f"{name} must not be negative, got {value!r}")
    return result


def calculate_total(base_rate: Number, nights: Number, multiplier: Number) -> Decimal:
    """base_rate x nights x multiplier, rounded to cents"""
    rate = _to_decimal(base_rate, "base_rate")
    count = _to_decimal(nights, "nights")
    factor = _to_decimal(multiplier, "multiplier")
    return (rate * count * factor).quantize(CENTS, rounding=ROUND_HALF_UP)


def resolve_base_rate(raw: Optional[Number], default: Number, property_ref: str = "") -> Decimal:
    """Return the property's nightly rate, or the configured default when it is unusable"""
    usable = (
        raw is not None
        and not isinstance(raw, bool)
        and isinstance(raw, (int, float, Decimal))
        and not (isinstance(raw, float) and not math.isfinite(raw))
        and not (isinstance(raw, Decimal) and not raw.is_finite())
        and raw >= 0
    )
    if usable:
        return Decimal(str(raw))

    logger.warning(
        "Property %s has no usable base rate (%r); substituting default rate %s",
        property_ref or "<unknown>", raw, default
    )
    return _to_decimal(default, "default base rate")


def resolve_package(
    tier: PricingTier,
    package_type: Optional[str],
    property: Optional[Property] = None
) -> Tuple[str, Decimal]:
    """Label and multiplier for a stay: property package, add-on package, then tier.

    A standard catalog package is only a name for a stay length, so the
    tier decides both its label and its price. Ids that are neither the
    property's nor in the catalog are rejected.
    """
    if not package_type:
        return tier.tier_id, tier.multiplier

    if property is not None:
        own_package = property.find_package(package_type)
        if own_package is not None:
            return own_package.package_id, own_package.multiplier

    catalog_package = get_package(package_type)
    if catalog_package is None:
        raise ValidationError(f"Unknown package type {package_type!r}")
    if catalog_package.overrides_tier:
        return catalog_package.package_id, catalog_package.multiplier

    return tier.tier_id, tier.multiplier


def select_multiplier(
    tier: PricingTier,
    package_type: Optional[str],
    property: Optional[Property] = None
) -> Decimal:
    return resolve_package(tier, package_type, property)[1]


def build_quote(
    property: Property,
    date_range: DateRange,
    package_type: Optional[str],
    default_base_rate: Number
) -> Quote:
    """Price a stay for a property"""
    nights = nights_between(date_range.from_date, date_range.to_date)
    tier = resolve_tier(nights)
    base_rate = resolve_base_rate(property.base_rate, default_base_rate, str(property.property_id))
    label, multiplier = resolve_package(tier, package_type, property)
    total = calculate_total(base_rate, nights, multiplier)

    return Quote(
        nights=nights,
        tier=tier,
        package_type=label,
        base_rate=base_rate,
        multiplier=multiplier,
        total=total
    )
