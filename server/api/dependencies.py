from fastapi import HTTPException, Request, status
from services.app_services import AppServices
from services.meeting_workflow import MeetingWorkflow


def get_services(request: Request) -> AppServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not initialized.",
        )
    return services


def get_workflow(request: Request) -> MeetingWorkflow:
    return get_services(request).workflow
