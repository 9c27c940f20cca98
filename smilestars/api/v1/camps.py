"""Camp API endpoints: lifecycle, consents and enrollments."""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.api.v1.auth import client_ip
from smilestars.database import get_db
from smilestars.exceptions import ValidationError
from smilestars.models import Camp, CampStatus, ConsentStatus
from smilestars.schemas.camp import (
    CampCreate,
    CampResponse,
    CampUpdate,
    ConsentRequest,
    ConsentResponse,
    EnrollmentResponse,
    EnrollStudentsRequest,
    EnrollStudentsResponse,
    ScheduleCampRequest,
    StudentSummary,
)
from smilestars.schemas.common import APIResponse, build_pagination
from smilestars.services.camp_service import get_camp_service
from smilestars.services.consent_service import get_consent_service
from smilestars.services.enrollment_service import get_enrollment_service
from smilestars.utils.permissions import (
    Action,
    ensure_entity_scope,
    get_permission_checker,
    require_action,
)
from smilestars.utils.request_context import get_current_user_id

router = APIRouter()


async def _get_camp_in_scope(db: AsyncSession, camp_id: int, action: Action) -> Camp:
    """Load a camp and check the caller may perform ``action`` at its school."""
    camp = await get_camp_service().get_camp(db, camp_id)
    await ensure_entity_scope(db, get_current_user_id(), action, camp.school_entity_id)
    return camp


# === Camps ===

@router.get("", response_model=APIResponse[list[CampResponse]])
@require_action(Action.VIEW_CAMPS)
async def list_camps(
    school_entity_id: int | None = Query(None, description="Filter by school"),
    camp_status: CampStatus | None = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
):
    """List camps.

    System admins may list every camp; everyone else lists one school's camps.
    """
    school_ids = None
    if school_entity_id is not None:
        await ensure_entity_scope(db, get_current_user_id(), Action.VIEW_CAMPS, school_entity_id)
        school_ids = [school_entity_id]
    elif not get_permission_checker().is_system_admin:
        raise ValidationError([{"field": "school_entity_id", "message": "school_entity_id is required"}])

    camps, total = await get_camp_service().list_camps(
        db, school_ids=school_ids, status=camp_status, page=page, page_size=page_size
    )
    return APIResponse(
        data=[CampResponse.model_validate(c) for c in camps],
        pagination=build_pagination(page, page_size, total),
    )


@router.post("", response_model=APIResponse[CampResponse], status_code=status.HTTP_201_CREATED)
@require_action(Action.CREATE_CAMP)
async def create_camp(
    data: CampCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a camp in DRAFT. The school must be ACTIVE."""
    user_id = get_current_user_id()
    await ensure_entity_scope(db, user_id, Action.CREATE_CAMP, data.school_entity_id)

    camp = await get_camp_service().create_camp(
        db,
        actor_id=user_id,
        school_entity_id=data.school_entity_id,
        name=data.name,
        start_date=data.start_date,
        end_date=data.end_date,
        expected_students=data.expected_students,
        description=data.description,
        assigned_dentist_id=data.assigned_dentist_id,
    )
    return APIResponse(data=CampResponse.model_validate(camp), message="Camp created successfully")


@router.get("/{camp_id}", response_model=APIResponse[CampResponse])
@require_action(Action.VIEW_CAMPS)
async def get_camp(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a camp."""
    camp = await _get_camp_in_scope(db, camp_id, Action.VIEW_CAMPS)
    return APIResponse(data=CampResponse.model_validate(camp))


@router.patch("/{camp_id}", response_model=APIResponse[CampResponse])
@require_action(Action.EDIT_CAMP)
async def update_camp(
    camp_id: int,
    data: CampUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update camp details.

    Name, dates, expected students and dentist are locked once consent
    collection starts; the description can always be edited.
    """
    await _get_camp_in_scope(db, camp_id, Action.EDIT_CAMP)
    camp = await get_camp_service().update_camp(
        db, camp_id, data.model_dump(exclude_unset=True), actor_id=get_current_user_id()
    )
    return APIResponse(data=CampResponse.model_validate(camp), message="Camp updated successfully")


@router.post("/{camp_id}/schedule", response_model=APIResponse[CampResponse])
@require_action(Action.SCHEDULE_CAMP)
async def schedule_camp(
    camp_id: int,
    data: ScheduleCampRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Move a DRAFT camp to SCHEDULED and notify the school."""
    await _get_camp_in_scope(db, camp_id, Action.SCHEDULE_CAMP)
    data = data or ScheduleCampRequest()
    camp = await get_camp_service().schedule_camp(
        db,
        camp_id,
        start_date=data.start_date,
        end_date=data.end_date,
        actor_id=get_current_user_id(),
    )
    return APIResponse(data=CampResponse.model_validate(camp), message="Camp scheduled")


@router.post("/{camp_id}/start-consent", response_model=APIResponse[CampResponse])
@require_action(Action.START_CONSENT_COLLECTION)
async def start_consent_collection(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Open consent collection for a SCHEDULED camp."""
    await _get_camp_in_scope(db, camp_id, Action.START_CONSENT_COLLECTION)
    camp = await get_camp_service().start_consent_collection(
        db, camp_id, actor_id=get_current_user_id()
    )
    return APIResponse(data=CampResponse.model_validate(camp), message="Consent collection started")


@router.post("/{camp_id}/start", response_model=APIResponse[CampResponse])
@require_action(Action.START_CAMP)
async def start_camp(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Start a camp."""
    await _get_camp_in_scope(db, camp_id, Action.START_CAMP)
    camp = await get_camp_service().start_camp(db, camp_id, actor_id=get_current_user_id())
    return APIResponse(data=CampResponse.model_validate(camp), message="Camp started")


@router.post("/{camp_id}/complete", response_model=APIResponse[CampResponse])
@require_action(Action.COMPLETE_CAMP)
async def complete_camp(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Complete an ACTIVE camp."""
    await _get_camp_in_scope(db, camp_id, Action.COMPLETE_CAMP)
    camp = await get_camp_service().complete_camp(db, camp_id, actor_id=get_current_user_id())
    return APIResponse(data=CampResponse.model_validate(camp), message="Camp completed")


@router.post("/{camp_id}/cancel", response_model=APIResponse[CampResponse])
@require_action(Action.CANCEL_CAMP)
async def cancel_camp(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Cancel a camp that has not finished."""
    await _get_camp_in_scope(db, camp_id, Action.CANCEL_CAMP)
    camp = await get_camp_service().cancel_camp(db, camp_id, actor_id=get_current_user_id())
    return APIResponse(data=CampResponse.model_validate(camp), message="Camp cancelled")


# === Consents ===

@router.post(
    "/{camp_id}/consents",
    response_model=APIResponse[ConsentResponse],
    status_code=status.HTTP_201_CREATED,
)
@require_action(Action.REQUEST_CONSENT)
async def request_consent(
    camp_id: int,
    data: ConsentRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Request parental consent for a student. Repeated requests return the same record."""
    await _get_camp_in_scope(db, camp_id, Action.REQUEST_CONSENT)
    consent = await get_consent_service().request_consent(
        db,
        camp_id,
        data.student_entity_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return APIResponse(data=ConsentResponse.model_validate(consent))


@router.get("/{camp_id}/consents", response_model=APIResponse[list[ConsentResponse]])
@require_action(Action.VIEW_CAMPS)
async def list_consents(
    camp_id: int,
    consent_status: ConsentStatus | None = Query(None, alias="status", description="Filter by status"),
    db: AsyncSession = Depends(get_db),
):
    """List consent records for a camp."""
    await _get_camp_in_scope(db, camp_id, Action.VIEW_CAMPS)
    consents = await get_consent_service().list_consents(db, camp_id, status=consent_status)
    return APIResponse(data=[ConsentResponse.model_validate(c) for c in consents])


# === Enrollments ===

@router.get("/{camp_id}/enrollments", response_model=APIResponse[list[EnrollmentResponse]])
@require_action(Action.VIEW_CAMPS)
async def list_enrollments(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """List the enrollments of a camp."""
    await _get_camp_in_scope(db, camp_id, Action.VIEW_CAMPS)
    enrollments = await get_enrollment_service().list_enrollments(db, camp_id)
    return APIResponse(data=[EnrollmentResponse.model_validate(e) for e in enrollments])


@router.post(
    "/{camp_id}/enrollments",
    response_model=APIResponse[EnrollStudentsResponse],
    status_code=status.HTTP_201_CREATED,
)
@require_action(Action.MANAGE_ENROLLMENTS)
async def enroll_students(
    camp_id: int,
    data: EnrollStudentsRequest,
    db: AsyncSession = Depends(get_db),
):
    """Enroll students in a camp, skipping those already enrolled."""
    await _get_camp_in_scope(db, camp_id, Action.MANAGE_ENROLLMENTS)
    enrolled, already_enrolled = await get_enrollment_service().enroll_students(
        db, camp_id, data.student_entity_ids, enrolled_by=get_current_user_id()
    )
    return APIResponse(
        data=EnrollStudentsResponse(
            enrolled=[EnrollmentResponse.model_validate(e) for e in enrolled],
            already_enrolled=already_enrolled,
        ),
        message=f"{len(enrolled)} students enrolled",
    )


@router.delete("/{camp_id}/enrollments/{student_id}", response_model=APIResponse[None])
@require_action(Action.MANAGE_ENROLLMENTS)
async def delete_enrollment(
    camp_id: int,
    student_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Remove a student from a camp. Screenings and reports are kept."""
    await _get_camp_in_scope(db, camp_id, Action.MANAGE_ENROLLMENTS)
    await get_enrollment_service().delete_camp_enrollment(
        db, camp_id, student_id, actor_id=get_current_user_id()
    )
    return APIResponse(message="Enrollment removed")


@router.get("/{camp_id}/available-students", response_model=APIResponse[list[StudentSummary]])
@require_action(Action.VIEW_CAMPS)
async def get_available_students(
    camp_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Students of the camp's school who can still be enrolled."""
    await _get_camp_in_scope(db, camp_id, Action.VIEW_CAMPS)
    students = await get_enrollment_service().get_available_students_for_camp(db, camp_id)
    return APIResponse(data=[StudentSummary.model_validate(s) for s in students])
