#!/usr/bin/env python

"""
    API routes for Cradle,
    a thin HTTP layer over `WaitlistAPI`.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import List, Optional, Union
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from cradle import configs
from cradle.core.api import WaitlistAPI
from cradle.core.exceptions import (
    CradleAPIError,
    NotFoundError,
    InvalidStateError,
    CapacityExhaustedError,
    ValidationError,
    TransientDependencyError,
)
from cradle.schemas.campaign import (
    WaitlistCampaign, CreateCampaignRequest, ExecuteCampaignRequest,
    ExecutionPlan, ExecutionResult, CampaignSummary
)
from cradle.schemas.capacity import CapacityCheck
from cradle.schemas.daycare import (
    Daycare, CreateDaycareRequest, Program, CreateProgramRequest, AuditLogEntry, Notification
)
from cradle.schemas.offer import (
    WaitlistOffer, CreateOfferRequest, OfferResponseRequest, OfferResponseResult
)
from cradle.schemas.rule import PriorityRule, CreateRuleRequest
from cradle.schemas.waitlist import (
    WaitlistEntry, JoinWaitlistRequest, RecalculationResult, PositionSummary,
    PauseRequest, ActorRequest
)

logger = logging.getLogger(__name__)

STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (CapacityExhaustedError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (TransientDependencyError, status.HTTP_503_SERVICE_UNAVAILABLE),
)

router = APIRouter()


def status_code_for(error):
    for cls, code in STATUS_CODES:
        if isinstance(error, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def cradle_error_handler(request: Request, exc: CradleAPIError):
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, CapacityExhaustedError):
        content["available_slots"] = exc.available_slots
        content["required_slots"] = exc.required_slots
    return JSONResponse(status_code=code, content=content)


def get_waitlist(request: Request) -> WaitlistAPI:
    return request.app.state.waitlist


# Daycares

@router.post("/daycares", response_model=Daycare, status_code=status.HTTP_201_CREATED)
def create_daycare(body: CreateDaycareRequest, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return Daycare.model_validate(waitlist.create_daycare(body))


@router.post("/daycares/{daycare_id}/programs", response_model=Program,
             status_code=status.HTTP_201_CREATED)
def create_program(daycare_id: int, body: CreateProgramRequest,
                   waitlist: WaitlistAPI = Depends(get_waitlist)):
    return Program.model_validate(waitlist.create_program(daycare_id, body))


@router.get("/daycares/{daycare_id}/capacity", response_model=CapacityCheck)
def check_capacity(daycare_id: int, program_id: Optional[int] = None, required_slots: int = 1,
                   waitlist: WaitlistAPI = Depends(get_waitlist)):
    return waitlist.check_capacity(daycare_id, program_id, required_slots)


@router.get("/daycares/{daycare_id}/audit", response_model=List[AuditLogEntry])
def audit_log(daycare_id: int, entry_id: Optional[int] = None, limit: int = 100,
              waitlist: WaitlistAPI = Depends(get_waitlist)):
    return [AuditLogEntry.model_validate(log)
            for log in waitlist.audit_log(daycare_id, entry_id, limit)]


# Priority rules

@router.get("/daycares/{daycare_id}/rules", response_model=List[PriorityRule])
def list_rules(daycare_id: int, program_id: Optional[int] = None,
               waitlist: WaitlistAPI = Depends(get_waitlist)):
    return [PriorityRule.model_validate(r) for r in waitlist.list_rules(daycare_id, program_id)]


@router.post("/rules", response_model=PriorityRule, status_code=status.HTTP_201_CREATED)
def create_rule(body: CreateRuleRequest, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return PriorityRule.model_validate(waitlist.create_rule(body))


@router.post("/daycares/{daycare_id}/rules/defaults", response_model=List[PriorityRule],
             status_code=status.HTTP_201_CREATED)
def seed_default_rules(daycare_id: int, program_id: Optional[int] = None,
                       waitlist: WaitlistAPI = Depends(get_waitlist)):
    return [PriorityRule.model_validate(r)
            for r in waitlist.seed_default_rules(daycare_id, program_id)]


# Waitlist

@router.post("/waitlist", response_model=WaitlistEntry, status_code=status.HTTP_201_CREATED)
def join_waitlist(body: JoinWaitlistRequest, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistEntry.model_validate(waitlist.join_waitlist(body))


@router.get("/waitlist/{entry_id}", response_model=WaitlistEntry)
def get_entry(entry_id: int, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistEntry.model_validate(waitlist.get_entry(entry_id))


@router.get("/waitlist/{entry_id}/position", response_model=PositionSummary)
def position_summary(entry_id: int, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return waitlist.position_summary(entry_id)


@router.post("/waitlist/{entry_id}/withdraw", response_model=WaitlistEntry)
def withdraw(entry_id: int, body: ActorRequest = ActorRequest(),
             waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistEntry.model_validate(waitlist.withdraw(entry_id, body.performed_by))


@router.post("/waitlist/{entry_id}/pause", response_model=WaitlistEntry)
def pause(entry_id: int, body: PauseRequest = PauseRequest(),
          waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistEntry.model_validate(
        waitlist.pause(entry_id, body.paused_until, body.performed_by))


@router.post("/waitlist/{entry_id}/resume", response_model=WaitlistEntry)
def resume(entry_id: int, body: ActorRequest = ActorRequest(),
           waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistEntry.model_validate(waitlist.resume(entry_id, body.performed_by))


@router.post("/daycares/{daycare_id}/positions/recalculate", response_model=RecalculationResult)
def recalculate_positions(daycare_id: int, program_id: Optional[int] = None,
                          waitlist: WaitlistAPI = Depends(get_waitlist)):
    return waitlist.recalculate_positions(daycare_id, program_id)


@router.get("/daycares/{daycare_id}/candidates", response_model=List[WaitlistEntry])
def rank_candidates(daycare_id: int, program_id: Optional[int] = None,
                    waitlist: WaitlistAPI = Depends(get_waitlist)):
    return [WaitlistEntry.model_validate(e)
            for e in waitlist.rank_waitlist_candidates(daycare_id, program_id)]


# Offers

@router.post("/offers", response_model=WaitlistOffer, status_code=status.HTTP_201_CREATED)
def create_offer(body: CreateOfferRequest, waitlist: WaitlistAPI = Depends(get_waitlist)):
    offer = waitlist.create_offer(
        body.entry_id, body.spot_start_date, settings=body.settings, created_by=body.created_by)
    return WaitlistOffer.model_validate(offer)


@router.post("/offers/{offer_id}/respond", response_model=OfferResponseResult)
def respond_to_offer(offer_id: int, body: OfferResponseRequest,
                     waitlist: WaitlistAPI = Depends(get_waitlist)):
    return waitlist.respond_to_offer(
        offer_id, body.response, notes=body.notes, deposit_paid=body.deposit_paid,
        responded_by=body.responded_by)


# Campaigns

@router.post("/campaigns", response_model=WaitlistCampaign, status_code=status.HTTP_201_CREATED)
def create_campaign(body: CreateCampaignRequest, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistCampaign.model_validate(waitlist.create_campaign(body))


@router.get("/daycares/{daycare_id}/campaigns", response_model=List[CampaignSummary])
def list_campaigns(daycare_id: int, program_id: Optional[int] = None,
                   status: Optional[str] = None, include_completed: bool = False,
                   waitlist: WaitlistAPI = Depends(get_waitlist)):
    return waitlist.list_campaigns(daycare_id, program_id, status, include_completed)


@router.get("/campaigns/{campaign_id}", response_model=WaitlistCampaign)
def get_campaign(campaign_id: int, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistCampaign.model_validate(waitlist.get_campaign(campaign_id))


@router.post("/campaigns/{campaign_id}/execute",
             response_model=Union[ExecutionResult, ExecutionPlan])
def execute_campaign(campaign_id: int, body: ExecuteCampaignRequest = ExecuteCampaignRequest(),
                     waitlist: WaitlistAPI = Depends(get_waitlist)):
    return waitlist.execute_campaign(
        campaign_id, performed_by=body.performed_by, dry_run=body.dry_run)


@router.post("/campaigns/{campaign_id}/cancel", response_model=WaitlistCampaign)
def cancel_campaign(campaign_id: int, body: ActorRequest = ActorRequest(),
                    waitlist: WaitlistAPI = Depends(get_waitlist)):
    return WaitlistCampaign.model_validate(
        waitlist.cancel_campaign(campaign_id, body.performed_by))


# Notifications

@router.get("/notifications/{recipient_id}", response_model=List[Notification])
def notifications(recipient_id: str, unread_only: bool = False,
                  waitlist: WaitlistAPI = Depends(get_waitlist)):
    return [Notification.model_validate(n)
            for n in waitlist.notifications(recipient_id, unread_only)]


@router.post("/notifications/{recipient_id}/read")
def mark_notifications_read(recipient_id: str, waitlist: WaitlistAPI = Depends(get_waitlist)):
    return {"updated": waitlist.mark_notifications_read(recipient_id)}


# Periodic jobs

@router.post("/cron/expire-offers")
def expire_offers(authorization: Optional[str] = Header(None),
                  waitlist: WaitlistAPI = Depends(get_waitlist)):
    """Expiration sweep and reminders, called by the external scheduler."""
    if configs.CRON_SECRET and authorization != f"Bearer {configs.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")
    cleanup = waitlist.cleanup_expired_offers()
    reminders = waitlist.send_expiration_reminders()
    return {
        "released_count": cleanup.released_count,
        "offer_ids": cleanup.offer_ids,
        "follow_on_offers": cleanup.follow_on_offers,
        "reminders_sent": reminders.reminders_sent,
    }
