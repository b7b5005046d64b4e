from fastapi import APIRouter, Request

from storefront.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root(request: Request):
    store = getattr(request.app.state, "store", None)
    return {"ok": True, "store": getattr(store, "backend", None)}

@router.get("/details")
def health_details(request: Request):
    store = getattr(request.app.state, "store", None)
    return {
        "ok": True,
        "store": getattr(store, "backend", None),
        "rateLimit": rate_limit_health_info(request),
    }
