"""Health check endpoints."""

from fastapi import APIRouter, Depends

from rampkit.anchors.capabilities import list_profiles
from rampkit.api.dependencies import get_settings_dep
from rampkit.config import Settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "rampkit"}


@router.get("/health/detailed")
async def detailed_health(settings: Settings = Depends(get_settings_dep)):
    """Detailed health check with configuration info."""
    return {
        "status": "healthy",
        "service": "rampkit",
        "version": "0.1.0",
        "config": settings.get_safe_dict(),
    }


@router.get("/api/anchors")
async def list_anchors():
    """Registered anchors with their capabilities and regions."""
    return [
        {
            "id": profile.id,
            "name": profile.name,
            "description": profile.description,
            "kyc_flow": (
                profile.capabilities.kyc_flow.value
                if profile.capabilities.kyc_flow
                else None
            ),
            "links": profile.links,
            "regions": {
                region: {
                    "on_ramp": caps.on_ramp,
                    "off_ramp": caps.off_ramp,
                    "payment_rails": list(caps.payment_rails),
                    "tokens": list(caps.tokens),
                }
                for region, caps in profile.regions.items()
            },
        }
        for profile in list_profiles()
    ]
