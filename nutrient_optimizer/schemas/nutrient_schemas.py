"""
Pydantic schemas for the Nutrient Solver API.
Includes request/response models and conversions to the core dataclasses.
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict

from nutrient_optimizer.services.chemistry import (
    Ion,
    IonTarget,
    Salt,
    TargetProfile,
    ion_from_code,
)
from nutrient_optimizer.services.exceptions import UnknownIonError


def _canonical_ion_code(value: str) -> str:
    try:
        return ion_from_code(value).code
    except UnknownIonError as e:
        raise ValueError(str(e)) from e


# ==================== CATALOG SCHEMAS ====================

class SaltSchema(BaseModel):
    """A catalog salt with ion yields in grams per mole."""
    name: str = Field(..., min_length=1, max_length=120)
    formula: str = Field(default="", max_length=120)
    molecular_weight: float = Field(..., gt=0, allow_inf_nan=False, description="g/mol")
    ion_contributions: Dict[str, float] = Field(
        default_factory=dict, description="Ion code -> grams of ion per mole of salt"
    )

    @field_validator("ion_contributions")
    @classmethod
    def validate_contributions(cls, value: Dict[str, float]) -> Dict[str, float]:
        cleaned = {}
        for code, grams in value.items():
            if grams < 0:
                raise ValueError(f"Contribution of {code} must be >= 0")
            cleaned[_canonical_ion_code(code)] = grams
        return cleaned

    @classmethod
    def from_salt(cls, salt: Salt) -> "SaltSchema":
        return cls(
            name=salt.name,
            formula=salt.formula,
            molecular_weight=salt.molecular_weight,
            ion_contributions={ion.code: grams for ion, grams in salt.ion_contributions.items()},
        )

    def to_salt(self) -> Salt:
        return Salt(
            name=self.name,
            formula=self.formula,
            molecular_weight=self.molecular_weight,
            ion_contributions={ion_from_code(code): grams for code, grams in self.ion_contributions.items()},
        )


# ==================== PROFILE SCHEMAS ====================

class IonTargetSchema(BaseModel):
    """Acceptable range for one ion; target defaults to the midpoint."""
    ion: str = Field(..., description="Ion code, e.g. 'Nitrate'")
    min_ppm: float = Field(..., ge=0, allow_inf_nan=False)
    max_ppm: float = Field(..., ge=0, allow_inf_nan=False)
    target_ppm: Optional[float] = Field(None, ge=0, allow_inf_nan=False)

    @field_validator("ion")
    @classmethod
    def validate_ion(cls, value: str) -> str:
        return _canonical_ion_code(value)

    @model_validator(mode="after")
    def check_range(self) -> "IonTargetSchema":
        if self.min_ppm > self.max_ppm:
            raise ValueError(f"{self.ion}: min_ppm ({self.min_ppm}) exceeds max_ppm ({self.max_ppm})")
        return self

    def to_target(self) -> IonTarget:
        return IonTarget(
            ion=ion_from_code(self.ion),
            min_ppm=self.min_ppm,
            max_ppm=self.max_ppm,
            target_ppm=self.target_ppm,
        )


class TargetProfileSchema(BaseModel):
    name: str = Field(default="Custom", min_length=1, max_length=120)
    description: str = ""
    min_ec: Optional[float] = Field(None, ge=0, description="mS/cm, informational")
    max_ec: Optional[float] = Field(None, ge=0, description="mS/cm, informational")
    ion_targets: List[IonTargetSchema] = Field(default_factory=list)

    @field_validator("ion_targets")
    @classmethod
    def no_repeated_ions(cls, value: List[IonTargetSchema]) -> List[IonTargetSchema]:
        seen = set()
        for target in value:
            if target.ion in seen:
                raise ValueError(f"{target.ion} is listed more than once")
            seen.add(target.ion)
        return value

    @classmethod
    def from_profile(cls, profile: TargetProfile) -> "TargetProfileSchema":
        return cls(
            name=profile.name,
            description=profile.description,
            min_ec=profile.min_ec,
            max_ec=profile.max_ec,
            ion_targets=[
                IonTargetSchema(
                    ion=t.ion.code, min_ppm=t.min_ppm, max_ppm=t.max_ppm, target_ppm=t.target_ppm
                )
                for t in profile.ion_targets
            ],
        )

    def to_profile(self) -> TargetProfile:
        return TargetProfile(
            name=self.name,
            description=self.description,
            min_ec=self.min_ec,
            max_ec=self.max_ec,
            ion_targets=tuple(t.to_target() for t in self.ion_targets),
        )


# ==================== SOLVE SCHEMAS ====================

class SolveRequest(BaseModel):
    """Selected salt names plus either an inline profile or a library profile name."""
    selected_salts: List[str] = Field(default_factory=list, description="Catalog salt names")
    profile: Optional[TargetProfileSchema] = None
    profile_name: Optional[str] = Field(None, description="Name of a built-in plant profile")
    source_water_ppm: Optional[Dict[str, float]] = Field(
        None, description="Ion code -> ppm already present in the water"
    )

    @field_validator("source_water_ppm")
    @classmethod
    def validate_source_water(cls, value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        if value is None:
            return None
        cleaned = {}
        for code, ppm in value.items():
            if ppm < 0:
                raise ValueError(f"Source water {code} must be >= 0 ppm")
            cleaned[_canonical_ion_code(code)] = ppm
        return cleaned

    @model_validator(mode="after")
    def one_profile_source(self) -> "SolveRequest":
        if (self.profile is None) == (self.profile_name is None):
            raise ValueError("Provide exactly one of 'profile' or 'profile_name'")
        return self

    def source_water(self) -> Optional[Dict[Ion, float]]:
        if not self.source_water_ppm:
            return None
        return {ion_from_code(code): ppm for code, ppm in self.source_water_ppm.items()}


class SaltDoseSchema(BaseModel):
    name: str
    formula: str
    grams_per_liter: float


class IonComparisonSchema(BaseModel):
    ion: str
    symbol: str
    target_ppm: float
    actual_ppm: float
    delta_ppm: float
    delta_percent: float
    min_ppm: float
    max_ppm: float
    in_range: bool
    supplyable: bool


class SaltOptionSchema(BaseModel):
    name: str
    formula: str
    score: float
    ion_content: float


class RecommendationSchema(BaseModel):
    reason: str
    priority: int
    ion: Optional[str] = None
    options: List[SaltOptionSchema] = Field(default_factory=list)


class SolveResponse(BaseModel):
    """Result of a solve request."""
    success: bool
    is_approximate: bool
    error: Optional[str] = None
    reason: str = ""
    recipe: List[SaltDoseSchema] = Field(default_factory=list)
    unused_salts: List[str] = Field(default_factory=list)
    ion_comparisons: List[IonComparisonSchema] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    unsupplyable_ions: List[str] = Field(default_factory=list)
    final_error: float = 0.0
    total_dissolved_solids_ppm: float = 0.0
    recommendations: List[RecommendationSchema] = Field(default_factory=list)
    report: str = ""


class RecommendationsResponse(BaseModel):
    profile_name: str
    recommendations: List[RecommendationSchema] = Field(default_factory=list)


class ProfileListResponse(BaseModel):
    profiles: List[TargetProfileSchema]
    total: int


class SaltListResponse(BaseModel):
    salts: List[SaltSchema]
    total: int


class SaltUpsertResponse(BaseModel):
    written: int
    total: int
