from fastapi import APIRouter, Depends, Response, status

from milo.schemas.auth import CurrentUserResponse
from milo.schemas.note import NoteCreateRequest, NoteResponse, NoteUpdateRequest
from milo.services.auth_service import require_current_user
from milo.services.notes_service import NotesService

router = APIRouter(prefix="/notes", tags=["notes"])


@router.get("", response_model=list[NoteResponse])
def list_notes(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[NoteResponse]:
    service = NotesService()
    return service.list_notes(current_user)


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
def create_note(
    payload: NoteCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> NoteResponse:
    service = NotesService()
    return service.create_note(current_user, payload)


@router.get("/{note_id}", response_model=NoteResponse)
def get_note(
    note_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> NoteResponse:
    service = NotesService()
    return service.get_note(current_user, note_id)


@router.patch("/{note_id}", response_model=NoteResponse)
def update_note(
    note_id: str,
    payload: NoteUpdateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> NoteResponse:
    service = NotesService()
    return service.update_note(current_user, note_id, payload)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_note(
    note_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> Response:
    service = NotesService()
    service.delete_note(current_user, note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
