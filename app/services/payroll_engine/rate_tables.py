"""
OpsGuard - Payroll Rate Tables

Statutory payroll constants for Chile as immutable, versioned snapshots:
- AFP (pension fund) mandatory rate and per-fund commissions
- SIS (disability/survivor insurance) employer rate
- Health: Fonasa flat 7%, Isapre contracted plan
- AFC (unemployment insurance) worker/employer split per contract type
- Work-injury (Mutual) base rate and risk levels
- Contribution caps in UF
- Legal gratification (Art. 50 CT, 25% regime, capped at 4.75 IMM a year)
- Impuesto Único de Segunda Categoría brackets (monthly, CLP)
- Family allowance (asignación familiar) tranches

A statutory change is a new version with a new effective date; existing
versions are never edited, so a quote priced last month reproduces.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from app.services.payroll_engine.rate import Rate, ZERO, to_decimal
from app.utils.error_handling import ConfigurationError, RateTablesNotFoundError


# ===========================================
# ENUMS
# ===========================================

class ContractType(str, Enum):
    """Employment contract type (drives the AFC split)."""
    INDEFINITE = "indefinite"
    FIXED_TERM = "fixed_term"


class HealthSystem(str, Enum):
    """Health insurance system."""
    FONASA = "fonasa"
    ISAPRE = "isapre"


# ===========================================
# TABLE ROWS
# ===========================================

@dataclass(frozen=True)
class TaxBracket:
    """
    One monthly income-tax bracket.

    Tax for a base inside the bracket is `base x factor - rebate`, where the
    rebate is the cumulative deduction that makes the schedule marginal.
    """
    from_clp: Decimal
    to_clp: Optional[Decimal]
    factor: Rate
    rebate_clp: Decimal

    def contains(self, amount: Decimal) -> bool:
        if amount < self.from_clp:
            return False
        return self.to_clp is None or amount <= self.to_clp


@dataclass(frozen=True)
class AfcRates:
    """Unemployment insurance rates for one contract type."""
    worker: Rate
    employer_cic: Rate
    employer_fcs: Rate

    @property
    def employer_total(self) -> Rate:
        return self.employer_cic + self.employer_fcs


@dataclass(frozen=True)
class FamilyAllowanceTranche:
    """IPS family allowance tranche, keyed by taxable income."""
    from_clp: Decimal
    to_clp: Optional[Decimal]
    amount_per_dependent: Decimal
    amount_maternal: Decimal = ZERO

    def contains(self, amount: Decimal) -> bool:
        if amount < self.from_clp:
            return False
        return self.to_clp is None or amount <= self.to_clp


# ===========================================
# RATE TABLES SNAPSHOT
# ===========================================

@dataclass(frozen=True)
class RateTables:
    """Immutable snapshot of one payroll parameter version."""

    version_id: str
    name: str
    effective_from: date
    effective_until: Optional[date]

    # Monetary references captured with the version
    uf_clp: Decimal
    utm_clp: Decimal
    imm_clp: Decimal

    pension_base_rate: Rate
    pension_commissions: Mapping[str, Rate]
    sis_rate: Rate
    fonasa_rate: Rate
    isapre_min_rate: Rate
    afc: Mapping[ContractType, AfcRates]
    work_injury_base_rate: Rate
    work_injury_risk_levels: Mapping[str, Rate]

    pension_cap_uf: Decimal
    health_cap_uf: Decimal
    afc_cap_uf: Decimal

    gratification_rate: Rate
    gratification_cap_imm_multiple: Decimal

    tax_brackets: Tuple[TaxBracket, ...]
    family_allowance: Tuple[FamilyAllowanceTranche, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Freeze the lookup tables so a snapshot cannot drift after loading
        for name in ("pension_commissions", "afc", "work_injury_risk_levels"):
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(value)))
        object.__setattr__(self, "tax_brackets", tuple(self.tax_brackets))
        object.__setattr__(self, "family_allowance", tuple(self.family_allowance))
        if not self.tax_brackets:
            raise ValueError(f"Rate tables '{self.version_id}' define no tax brackets")

    # -------------------------------------------
    # Caps
    # -------------------------------------------

    @property
    def pension_cap_clp(self) -> Decimal:
        return self.pension_cap_uf * self.uf_clp

    @property
    def health_cap_clp(self) -> Decimal:
        return self.health_cap_uf * self.uf_clp

    @property
    def afc_cap_clp(self) -> Decimal:
        return self.afc_cap_uf * self.uf_clp

    @property
    def gratification_monthly_cap_clp(self) -> Decimal:
        """Annual cap of 4.75 minimum wages, spread over 12 months."""
        return self.imm_clp * self.gratification_cap_imm_multiple / 12

    # -------------------------------------------
    # Lookups
    # -------------------------------------------

    def is_effective_on(self, on_date: date) -> bool:
        if on_date < self.effective_from:
            return False
        return self.effective_until is None or on_date <= self.effective_until

    def pension_commission(self, afp_name: str) -> Rate:
        """Fund commission for an AFP, matched case-insensitively."""
        key = (afp_name or "").strip().lower()
        for name, rate in self.pension_commissions.items():
            if name.lower() == key:
                return rate
        raise ConfigurationError("afp_name", afp_name, allowed=list(self.pension_commissions))

    def health_rate(self, health_system: Any, plan_rate: Optional[Rate] = None) -> Rate:
        system = _coerce_enum(HealthSystem, health_system, "health_system")
        if system is HealthSystem.FONASA:
            return self.fonasa_rate
        return plan_rate if plan_rate else self.isapre_min_rate

    def afc_rates(self, contract_type: Any) -> AfcRates:
        contract = _coerce_enum(ContractType, contract_type, "contract_type")
        try:
            return self.afc[contract]
        except KeyError:
            raise ConfigurationError("contract_type", contract.value, allowed=[c.value for c in self.afc])

    def work_injury_rate(self, risk_level: Optional[str] = None) -> Rate:
        """Base rate, or the rate for a named risk level."""
        if not risk_level:
            return self.work_injury_base_rate
        try:
            return self.work_injury_risk_levels[risk_level.lower()]
        except KeyError:
            raise ConfigurationError("work_injury_risk", risk_level, allowed=list(self.work_injury_risk_levels))

    def family_allowance_for(self, taxable_income: Decimal, num_dependents: int, has_maternal: bool = False) -> Decimal:
        if not self.family_allowance or num_dependents <= 0:
            return ZERO
        for tranche in self.family_allowance:
            if tranche.contains(taxable_income):
                amount = tranche.amount_per_dependent * num_dependents
                if has_maternal:
                    amount += tranche.amount_maternal
                return amount
        return ZERO

    # -------------------------------------------
    # Serialization
    # -------------------------------------------

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        version_id: str,
        effective_from: Optional[date] = None,
        effective_until: Optional[date] = None,
    ) -> "RateTables":
        """
        Build a snapshot from the JSON payload stored on a parameter version.

        Percent-or-fraction fields go through `Rate.of`.
        """
        meta = data.get("version_metadata", {})
        refs = data.get("references", {})
        if effective_from is None:
            effective_from = date.fromisoformat(meta["effective_from"])
        if effective_until is None and meta.get("effective_until"):
            effective_until = date.fromisoformat(meta["effective_until"])

        afc = {}
        for contract in ContractType:
            row = data["afc"].get(contract.value)
            if row is None:
                continue
            afc[contract] = AfcRates(
                worker=Rate.of(row["worker"]["total_rate"]),
                employer_cic=Rate.of(row["employer"]["cic_rate"]),
                employer_fcs=Rate.of(row["employer"]["fcs_rate"]),
            )

        brackets = tuple(
            TaxBracket(
                from_clp=to_decimal(b["from_clp"]),
                to_clp=to_decimal(b["to_clp"]) if b.get("to_clp") is not None else None,
                factor=Rate.of(b["factor"]),
                rebate_clp=to_decimal(b["rebate_clp"]),
            )
            for b in data["tax_brackets"]
        )

        family = data.get("family_allowance") or {}
        tranches = ()
        if family.get("enabled"):
            tranches = tuple(
                FamilyAllowanceTranche(
                    from_clp=to_decimal(t["from_clp"]),
                    to_clp=to_decimal(t["to_clp"]) if t.get("to_clp") is not None else None,
                    amount_per_dependent=to_decimal(t["amount_per_dependent"]),
                    amount_maternal=to_decimal(t.get("amount_maternal", 0)),
                )
                for t in family.get("tranches", [])
            )

        gratification = data.get("gratification", {}).get("regime_25_monthly", {})
        work_injury = data["work_injury"]

        return cls(
            version_id=str(version_id),
            name=meta.get("name", str(version_id)),
            effective_from=effective_from,
            effective_until=effective_until,
            uf_clp=to_decimal(refs["uf_clp"]),
            utm_clp=to_decimal(refs.get("utm_clp", 0)),
            imm_clp=to_decimal(data["imm"]["value_clp"]),
            pension_base_rate=Rate.of(data["afp"]["base_rate"]),
            pension_commissions={
                name: Rate.of(row["commission_rate"])
                for name, row in data["afp"]["commissions"].items()
            },
            sis_rate=Rate.of(data["sis"]["employer_rate"]),
            fonasa_rate=Rate.of(data["health"]["fonasa"]["rate"]),
            isapre_min_rate=Rate.of(data["health"]["isapre"]["min_rate"]),
            afc=afc,
            work_injury_base_rate=Rate.of(work_injury["base_rate"]),
            work_injury_risk_levels={
                level.lower(): Rate.of(rate)
                for level, rate in work_injury.get("risk_levels", {}).items()
            },
            pension_cap_uf=to_decimal(data["caps"]["pension_uf"]),
            health_cap_uf=to_decimal(data["caps"]["health_uf"]),
            afc_cap_uf=to_decimal(data["caps"]["afc_uf"]),
            gratification_rate=Rate.of(gratification.get("monthly_rate", "0.25")),
            gratification_cap_imm_multiple=to_decimal(gratification.get("annual_cap_imm_multiple", "4.75")),
            tax_brackets=brackets,
            family_allowance=tranches,
        )

    def snapshot_summary(self) -> Dict[str, Any]:
        """Version and references captured alongside a calculation."""
        return {
            "version_id": self.version_id,
            "name": self.name,
            "effective_from": self.effective_from.isoformat(),
            "effective_until": self.effective_until.isoformat() if self.effective_until else None,
            "references_at_calculation": {
                "uf_clp": str(self.uf_clp),
                "utm_clp": str(self.utm_clp),
                "imm_clp": str(self.imm_clp),
            },
            "caps_clp": {
                "pension": str(self.pension_cap_clp),
                "health": str(self.health_cap_clp),
                "afc": str(self.afc_cap_clp),
            },
        }


def _coerce_enum(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise ConfigurationError(field_name, value, allowed=[e.value for e in enum_cls])


def select_rate_tables(versions: Iterable[RateTables], on_date: date) -> RateTables:
    """
    Pick the version in effect on a date.

    When effective ranges overlap the most recently started version wins.
    """
    candidates = [v for v in versions if v.is_effective_on(on_date)]
    if not candidates:
        raise RateTablesNotFoundError(on_date=on_date)
    return max(candidates, key=lambda v: v.effective_from)


# ===========================================
# CHILE - FEBRUARY 2026 PARAMETERS
# ===========================================

CHILE_2026_02_PARAMETERS: Dict[str, Any] = {
    "version_metadata": {
        "name": "Parámetros Legales Chile - Febrero 2026",
        "effective_from": "2026-02-01",
        "effective_until": None,
        "source": "SII, Previred, Superintendencia de Pensiones",
    },
    "references": {
        "uf_clp": "39703.50",
        "uf_date": "2026-02-01",
        "utm_clp": "69611",
        "utm_month": "2026-02-01",
    },
    "afp": {
        "base_rate": "0.10",
        "commissions": {
            "uno": {"commission_rate": "0.0046"},
            "modelo": {"commission_rate": "0.0058"},
            "planvital": {"commission_rate": "0.0116"},
            "habitat": {"commission_rate": "0.0127"},
            "capital": {"commission_rate": "0.0144"},
            "cuprum": {"commission_rate": "0.0144"},
            "provida": {"commission_rate": "0.0145"},
        },
    },
    "sis": {"employer_rate": "0.0154"},
    "health": {
        "fonasa": {"rate": "0.07"},
        "isapre": {"min_rate": "0.07"},
    },
    "afc": {
        "indefinite": {
            "worker": {"cic_rate": "0.006", "fcs_rate": "0", "total_rate": "0.006"},
            "employer": {"cic_rate": "0.016", "fcs_rate": "0.008", "total_rate": "0.024"},
        },
        "fixed_term": {
            "worker": {"cic_rate": "0", "fcs_rate": "0", "total_rate": "0"},
            "employer": {"cic_rate": "0.028", "fcs_rate": "0.002", "total_rate": "0.03"},
        },
    },
    "caps": {
        "pension_uf": "89.9",
        "health_uf": "89.9",
        "work_injury_uf": "89.9",
        "afc_uf": "135.1",
    },
    "tax_brackets": [
        {"from_clp": "0", "to_clp": "939748.50", "factor": "0", "rebate_clp": "0"},
        {"from_clp": "939748.51", "to_clp": "2088330.00", "factor": "0.04", "rebate_clp": "37589.94"},
        {"from_clp": "2088330.01", "to_clp": "3480550.00", "factor": "0.08", "rebate_clp": "121123.14"},
        {"from_clp": "3480550.01", "to_clp": "4872770.00", "factor": "0.135", "rebate_clp": "312553.39"},
        {"from_clp": "4872770.01", "to_clp": "6264990.00", "factor": "0.23", "rebate_clp": "775466.54"},
        {"from_clp": "6264990.01", "to_clp": "8353320.00", "factor": "0.304", "rebate_clp": "1239075.80"},
        {"from_clp": "8353320.01", "to_clp": "21579410.00", "factor": "0.35", "rebate_clp": "1623328.52"},
        {"from_clp": "21579410.01", "to_clp": None, "factor": "0.40", "rebate_clp": "2702299.02"},
    ],
    "work_injury": {
        "base_rate": "0.0093",
        "risk_levels": {
            "low": "0.0093",
            "medium": "0.0095",
            "high": "0.0134",
            "security_industry": "0.0120",
        },
    },
    "gratification": {
        "regime_25_monthly": {
            "monthly_rate": "0.25",
            "annual_cap_imm_multiple": "4.75",
        },
    },
    "family_allowance": {
        "enabled": True,
        "tranches": [
            {"from_clp": 0, "to_clp": 631976, "amount_per_dependent": 22007, "amount_maternal": 22007},
            {"from_clp": 631977, "to_clp": 923067, "amount_per_dependent": 13505, "amount_maternal": 13505},
            {"from_clp": 923068, "to_clp": 1439668, "amount_per_dependent": 4267, "amount_maternal": 4267},
            {"from_clp": 1439669, "to_clp": None, "amount_per_dependent": 0, "amount_maternal": 0},
        ],
    },
    "imm": {"value_clp": "500000", "effective_from": "2024-07-01"},
}


def default_rate_tables() -> RateTables:
    """Built-in February 2026 version, used for seeding and tests."""
    return RateTables.from_dict(CHILE_2026_02_PARAMETERS, version_id="cl-2026-02")
