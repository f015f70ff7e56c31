from fastapi import APIRouter, Depends, Response, status

from milo.schemas.auth import CurrentUserResponse
from milo.schemas.task import TaskCreateRequest, TaskResponse, TaskUpdateRequest
from milo.services.auth_service import require_current_user
from milo.services.tasks_service import TasksService

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskResponse])
def list_tasks(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[TaskResponse]:
    service = TasksService()
    return service.list_tasks(current_user)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> TaskResponse:
    service = TasksService()
    return service.create_task(current_user, payload)


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> TaskResponse:
    service = TasksService()
    return service.get_task(current_user, task_id)


@router.patch("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: str,
    payload: TaskUpdateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> TaskResponse:
    service = TasksService()
    return service.update_task(current_user, task_id, payload)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> Response:
    service = TasksService()
    service.delete_task(current_user, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
