import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request

from app.core.auth import require_admin
from app.core.middleware import success_envelope
from app.core.rate_limit import client_ip
from app.models.contact import ContactCategory, ContactCreate, ContactStatus, ContactUpdate
from app.services.contact_service import ContactService, get_contact_service

router = APIRouter(prefix="/contact", tags=["Contact"])

logger = logging.getLogger("agricjournal.api.contact")


@router.post("/send", status_code=201)
def send_contact_message(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: ContactCreate = Body(...),
    contact_service: ContactService = Depends(get_contact_service),
):
    """
    前台“联系我们”表单。

    中文注释: 先落库再发邮件；邮件走后台任务，失败不影响 201 响应。
    """
    message = contact_service.send(
        payload,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "",
    )
    background_tasks.add_task(contact_service.notify, message)
    return success_envelope(
        {"message_id": message.id},
        message="Your message has been sent successfully. We will respond shortly.",
    )


@router.get("/")
def list_contact_messages(
    status: Optional[ContactStatus] = None,
    category: Optional[ContactCategory] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10),
    _admin: dict = Depends(require_admin),
    contact_service: ContactService = Depends(get_contact_service),
):
    result = contact_service.list_messages(status=status, category=category, page=page, limit=limit)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/{message_id}")
def get_contact_message(
    message_id: str,
    _admin: dict = Depends(require_admin),
    contact_service: ContactService = Depends(get_contact_service),
):
    return success_envelope({"message": contact_service.get(message_id).model_dump(mode="json")})


@router.patch("/{message_id}")
def update_contact_message(
    message_id: str,
    payload: ContactUpdate = Body(...),
    admin: dict = Depends(require_admin),
    contact_service: ContactService = Depends(get_contact_service),
):
    message = contact_service.update(message_id, payload)
    logger.info("contact message updated id=%s by user=%s", message.id, admin.get("id"))
    return success_envelope({"message": message.model_dump(mode="json")}, message="Message updated successfully")


@router.delete("/{message_id}")
def delete_contact_message(
    message_id: str,
    _admin: dict = Depends(require_admin),
    contact_service: ContactService = Depends(get_contact_service),
):
    contact_service.delete(message_id)
    return success_envelope(message="Message deleted successfully")
