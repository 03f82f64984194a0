from fastapi import APIRouter, Depends, HTTPException

import remitdesk.observability.metrics as metrics
from remitdesk.api.auth import require_admin
from remitdesk.core.orchestrator import Services, get_services
from remitdesk.utils.time import iso_from_ms

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders/{order_no}")
def get_order_snapshot(order_no: str, _=Depends(require_admin), svc: Services = Depends(get_services)):
    """Full order document plus its callback binding, for investigators."""
    order = svc.orders.get(order_no)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    binding = svc.bindings.get(order_no)
    return {
        "order": order.to_dict(),
        "createdAt": iso_from_ms(order.createdAt),
        "isDelayed": svc.policy.is_delayed(order),
        "ageMinutes": svc.policy.age_minutes(order),
        "binding": {
            "provider": binding.provider,
            "callbackUrl": binding.callbackUrl,
            "active": binding.active,
            "consumedAt": binding.consumedAt,
        } if binding else None,
    }


@router.get("/orders/{order_no}/timeline")
def get_order_timeline(order_no: str, _=Depends(require_admin), svc: Services = Depends(get_services)):
    order = svc.orders.get(order_no)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    events = [
        {"timestamp": iso_from_ms(h.timestamp), "status": h.status, "reason": h.reason, "updatedBy": h.updatedBy}
        for h in sorted(order.statusHistory, key=lambda h: h.timestamp)
    ]
    return {"orderNo": order_no, "version": order.version, "events": events}


@router.get("/verifications")
def list_verifications(_=Depends(require_admin), svc: Services = Depends(get_services)):
    active = svc.sessions.active()
    return {"active": active, "total": len(active)}


@router.post("/verifications/sweep")
def sweep_verifications(_=Depends(require_admin), svc: Services = Depends(get_services)):
    return {"removed": svc.sessions.sweep()}


@router.delete("/verifications/{principal_id}")
def clear_verification(principal_id: str, _=Depends(require_admin), svc: Services = Depends(get_services)):
    svc.sessions.clear(principal_id)
    return {"principalId": principal_id, "cleared": True}


@router.get("/metrics")
def get_metrics(_=Depends(require_admin)):
    """Observability snapshot backed by Redis counters."""
    return metrics.get_snapshot()
