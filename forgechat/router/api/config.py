from fastapi import APIRouter, Depends

from forgechat.config import Config, get_config
from forgechat.modes import MODE_CONFIGS, ModePolicy
from forgechat.router.api.params import GetModesResponse, ModeInfo

router = APIRouter(
    tags=["config"],
    prefix="/api/config",
)


@router.get("/modes")
async def get_modes(config: Config = Depends(get_config)) -> GetModesResponse:
    policy = ModePolicy()
    return GetModesResponse(
        default_mode=config.default_mode,
        modes=[
            ModeInfo(
                mode=mode,
                name=c.name,
                description=c.description,
                capabilities=c.capabilities,
                restrictions=c.restrictions,
                tools=[t.name for t in policy.tools_for_mode(mode)],
            )
            for mode, c in MODE_CONFIGS.items()
        ],
    )
