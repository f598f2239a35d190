"""
Nutrient Solver Router.
Provides endpoints for the salt catalog, plant profiles, recipe solving and
salt recommendations.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
import logging

from nutrient_optimizer.schemas.nutrient_schemas import (
    IonComparisonSchema,
    ProfileListResponse,
    RecommendationSchema,
    RecommendationsResponse,
    SaltDoseSchema,
    SaltListResponse,
    SaltOptionSchema,
    SaltSchema,
    SaltUpsertResponse,
    SolveRequest,
    SolveResponse,
    TargetProfileSchema,
)
from nutrient_optimizer.database import get_db
from nutrient_optimizer.services.catalog_provider import PlantProfileLibrary, SaltCatalogProvider
from nutrient_optimizer.services.chemistry import TargetProfile
from nutrient_optimizer.services.exceptions import CatalogLoadError, InvalidInputError
from nutrient_optimizer.services.nutrient_solver_service import (
    NutrientSolverService,
    SolveOutcome,
    format_optimization_result,
)
from nutrient_optimizer.services.salt_recommendation import SaltRecommendation
from nutrient_optimizer.services.salt_repository import SaltRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/nutrient-solver", tags=["nutrient-solver"])


def get_catalog_provider(request: Request) -> SaltCatalogProvider:
    return request.app.state.catalog_provider


def get_profile_library(request: Request) -> PlantProfileLibrary:
    return request.app.state.profile_library


def get_solver_service(
    provider: SaltCatalogProvider = Depends(get_catalog_provider),
) -> NutrientSolverService:
    return NutrientSolverService(provider)


def _catalog_unavailable(e: CatalogLoadError) -> HTTPException:
    logger.error(f"Catalog unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Catalog could not be loaded: {e}",
    )


def _resolve_profile(request: SolveRequest, library: PlantProfileLibrary) -> TargetProfile:
    if request.profile is not None:
        return request.profile.to_profile()
    profile = library.find(request.profile_name)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile '{request.profile_name}' not found")
    return profile


def recommendations_to_schema(recommendations: List[SaltRecommendation]) -> List[RecommendationSchema]:
    return [
        RecommendationSchema(
            reason=r.reason,
            priority=r.priority,
            ion=r.ion.code if r.ion is not None else None,
            options=[
                SaltOptionSchema(
                    name=o.salt.name,
                    formula=o.salt.formula,
                    score=round(o.score, 4),
                    ion_content=o.ion_content,
                )
                for o in r.recommended_salts
            ],
        )
        for r in recommendations
    ]


def outcome_to_response(outcome: SolveOutcome) -> SolveResponse:
    result = outcome.result
    return SolveResponse(
        success=result.success,
        is_approximate=result.is_approximate_solution,
        error=result.error.value if result.error else None,
        reason=result.reason_for_termination,
        recipe=[
            SaltDoseSchema(
                name=item.salt.name,
                formula=item.salt.formula,
                grams_per_liter=item.grams_per_liter,
            )
            for item in result.to_recipe()
        ],
        unused_salts=[salt.name for salt in result.unused_salts],
        ion_comparisons=[
            IonComparisonSchema(
                ion=c.ion.code,
                symbol=c.ion.symbol,
                target_ppm=round(c.target_ppm, 3),
                actual_ppm=round(c.actual_ppm, 3),
                delta_ppm=round(c.delta_ppm, 3),
                delta_percent=round(c.delta_percent, 2),
                min_ppm=c.min_ppm,
                max_ppm=c.max_ppm,
                in_range=c.in_range,
                supplyable=c.supplyable,
            )
            for c in result.ion_comparisons
        ],
        notes=list(result.infeasibility_reasons),
        unsupplyable_ions=[ion.code for ion in result.unsupplyable_ions],
        final_error=round(result.final_error, 6),
        total_dissolved_solids_ppm=(
            round(result.solution.total_dissolved_solids_ppm, 3) if result.solution else 0.0
        ),
        recommendations=recommendations_to_schema(outcome.recommendations),
        report=format_optimization_result(result),
    )


@router.get("/salts", response_model=SaltListResponse)
def list_salts(provider: SaltCatalogProvider = Depends(get_catalog_provider)):
    """List every salt in the catalog."""
    try:
        salts = provider.get_salts()
    except CatalogLoadError as e:
        raise _catalog_unavailable(e)
    return SaltListResponse(salts=[SaltSchema.from_salt(s) for s in salts], total=len(salts))


@router.put("/salts", response_model=SaltUpsertResponse)
def upsert_salts(
    salts: List[SaltSchema],
    request: Request,
    db: Session = Depends(get_db),
    provider: SaltCatalogProvider = Depends(get_catalog_provider),
):
    """
    Insert or update catalog salts by name in the database catalog.

    Only available when the app serves its catalog from the database; the
    provider cache is invalidated so the next read sees the new rows.
    """
    if request.app.state.catalog_source != "database":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Catalog is served from the built-in JSON library and is read-only",
        )
    repo = SaltRepository(db)
    written = repo.save_salts([schema.to_salt() for schema in salts])
    provider.invalidate()
    return SaltUpsertResponse(written=written, total=repo.count())


@router.get("/profiles", response_model=ProfileListResponse)
def list_profiles(library: PlantProfileLibrary = Depends(get_profile_library)):
    """List the built-in plant profiles."""
    try:
        profiles = library.profiles
    except CatalogLoadError as e:
        raise _catalog_unavailable(e)
    return ProfileListResponse(
        profiles=[TargetProfileSchema.from_profile(p) for p in profiles],
        total=len(profiles),
    )


@router.post("/solve", response_model=SolveResponse)
def solve_recipe(
    request: SolveRequest,
    service: NutrientSolverService = Depends(get_solver_service),
    library: PlantProfileLibrary = Depends(get_profile_library),
):
    """
    Compute salt dosages (g/L) for the selected salts.

    Returns:
    - recipe: Dosed salts, noise filtered and rounded to 5 decimals
    - ion_comparisons: Target vs. achieved ppm per ion
    - notes: Unsupplyable ions, out-of-range ions and ratio conflicts
    - recommendations: Salts to add when the result is failed or approximate
    """
    try:
        profile = _resolve_profile(request, library)
        outcome = service.solve_selection(request.selected_salts, profile, request.source_water())
    except CatalogLoadError as e:
        raise _catalog_unavailable(e)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return outcome_to_response(outcome)


@router.post("/recommendations", response_model=RecommendationsResponse)
def get_recommendations(
    request: SolveRequest,
    service: NutrientSolverService = Depends(get_solver_service),
    library: PlantProfileLibrary = Depends(get_profile_library),
):
    """Suggest catalog salts to add to the current selection."""
    try:
        profile = _resolve_profile(request, library)
        recommendations = service.recommend(request.selected_salts, profile)
    except CatalogLoadError as e:
        raise _catalog_unavailable(e)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RecommendationsResponse(
        profile_name=profile.name,
        recommendations=recommendations_to_schema(recommendations),
    )
